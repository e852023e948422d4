from livecomp.data.evaluator import DataBag as DataBag
from livecomp.data.evaluator import DataEvaluator as DataEvaluator
from livecomp.data.formatting import format_value as format_value
from livecomp.data.formatting import time_ago_in_words as time_ago_in_words
from livecomp.data.serializer import DataSerializer as DataSerializer

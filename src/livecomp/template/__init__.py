from livecomp.template.nodes import Branch as Branch
from livecomp.template.nodes import Loop as Loop
from livecomp.template.nodes import Output as Output
from livecomp.template.nodes import TemplateNode as TemplateNode
from livecomp.template.nodes import Text as Text
from livecomp.template.nodes import structure as structure
from livecomp.template.parser import parse_expression as parse_expression
from livecomp.template.parser import parse_template as parse_template
from livecomp.template.unparse import unparse_template as unparse_template

# Public API re-exports
# ruff: noqa: F401

# Application
from livecomp.app import LiveApp as LiveApp

# Components
from livecomp.component import ComponentRegistry as ComponentRegistry
from livecomp.component import LiveComponent as LiveComponent
from livecomp.component import action as action
from livecomp.component import dom_id as dom_id
from livecomp.component import helper as helper
from livecomp.component import stream_name as stream_name

# Compilation
from livecomp.compiler import CompiledArtifact as CompiledArtifact
from livecomp.compiler import Compiler as Compiler

# Data
from livecomp.data import DataEvaluator as DataEvaluator
from livecomp.data import DataSerializer as DataSerializer
from livecomp.data import time_ago_in_words as time_ago_in_words

# Rendering and broadcast
from livecomp.render import Renderer as Renderer
from livecomp.broadcast import Broadcaster as Broadcaster
from livecomp.broadcast import MemoryBus as MemoryBus
from livecomp.actions import Redirect as Redirect

# Signing
from livecomp.signing import Signers as Signers

# Errors
from livecomp.errors import BadSignature as BadSignature
from livecomp.errors import LiveComponentError as LiveComponentError
from livecomp.errors import TemplateCompileError as TemplateCompileError
from livecomp.errors import TemplateNotFoundError as TemplateNotFoundError
from livecomp.errors import TemplateSyntaxError as TemplateSyntaxError
from livecomp.errors import UnresolvableComponentError as UnresolvableComponentError

from livecomp.compiler.artifact import CollectionContext as CollectionContext
from livecomp.compiler.artifact import CompiledArtifact as CompiledArtifact
from livecomp.compiler.artifact import ExpressionRecord as ExpressionRecord
from livecomp.compiler.artifact import NestedComponentRef as NestedComponentRef
from livecomp.compiler.builder import ArtifactBuilder as ArtifactBuilder
from livecomp.compiler.classifier import Classification as Classification
from livecomp.compiler.classifier import Kind as Kind
from livecomp.compiler.classifier import Scope as Scope
from livecomp.compiler.classifier import classify as classify
from livecomp.compiler.classifier import classify_collection as classify_collection
from livecomp.compiler.service import Compiler as Compiler
from livecomp.compiler.service import FileTemplateSource as FileTemplateSource
from livecomp.compiler.service import LoadedTemplate as LoadedTemplate
from livecomp.compiler.service import TemplateSource as TemplateSource

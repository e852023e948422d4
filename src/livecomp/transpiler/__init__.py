from livecomp.transpiler.emitter import ExpressionEmitter as ExpressionEmitter
from livecomp.transpiler.emitter import TranspileError as TranspileError
from livecomp.transpiler.nodes import ExprNode as ExprNode
from livecomp.transpiler.nodes import StmtNode as StmtNode
from livecomp.transpiler.nodes import emit as emit
from livecomp.transpiler.nodes import emit_statements as emit_statements

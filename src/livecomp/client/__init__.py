from livecomp.client.runtime import ClientTransport as ClientTransport
from livecomp.client.runtime import Debouncer as Debouncer
from livecomp.client.runtime import LiveNode as LiveNode
from livecomp.client.runtime import NodeConfig as NodeConfig
from livecomp.client.runtime import NodeGroup as NodeGroup
from livecomp.client.runtime import NodeStatus as NodeStatus
from livecomp.client.runtime import SubscriptionHub as SubscriptionHub
from livecomp.client.runtime import TemplateResolver as TemplateResolver
from livecomp.client.runtime import merge as merge
from livecomp.client.transport import ActionClient as ActionClient
from livecomp.client.transport import ActionResult as ActionResult
from livecomp.client.transport import (
	SocketIOClientTransport as SocketIOClientTransport,
)

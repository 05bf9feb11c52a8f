"""
Node Protocol - The building blocks of a flow graph.

Every node declares a contract (what it consumes, what it produces and
which transformation turns one into the other) and carries the runtime
state the executor writes while the graph runs.

Node kinds form a closed union:
- plain: transform the input and pass the output to every successor
- splitter: split the output into items and drive successors once per item
- conditional: check the output for a success token and loop corrective
  feedback back to the node that produced its input
- collector: gather per-item results of upstream splitters into one output

The `kind` field is the discriminator, so a GraphSpec built from plain
dicts resolves each entry to the right model. Entries without a `kind`
are plain nodes.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Discriminator, Field, Tag


class ContentType(StrEnum):
    """Semantic type of the data flowing through a node."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


class ProcessorKind(StrEnum):
    """Which transformation the adapter applies to a node's input."""

    TEXT_TO_TEXT = "text-to-text"
    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_TEXT = "image-to-text"
    AUDIO_TO_TEXT = "audio-to-text"


class NodeKind(StrEnum):
    """Behavioral kind of a node."""

    PLAIN = "plain"
    SPLITTER = "splitter"
    CONDITIONAL = "conditional"
    COLLECTOR = "collector"


class NodeStatus(StrEnum):
    """Derived runtime status. Exactly one applies at any time."""

    IDLE = "idle"
    PROCESSING = "processing"
    DONE = "done"
    ERRORED = "errored"


class BaseNodeSpec(BaseModel):
    """Fields shared by every node kind."""

    id: str
    name: str = ""

    # Declared contract
    input_type: ContentType = ContentType.TEXT
    output_type: ContentType = ContentType.TEXT
    processor: ProcessorKind = ProcessorKind.TEXT_TO_TEXT
    instruction: str = Field(default="", description="System prompt handed to the adapter")

    # Runtime state (written by the executor only)
    processing: bool = False
    last_error: str | None = None
    has_been_processed: bool = False
    content: Any = None
    content_type: ContentType | None = None
    input_content: Any = None
    last_input_source: str | None = None

    model_config = {"extra": "allow"}

    @property
    def status(self) -> NodeStatus:
        if self.processing:
            return NodeStatus.PROCESSING
        if self.last_error is not None:
            return NodeStatus.ERRORED
        if self.has_been_processed:
            return NodeStatus.DONE
        return NodeStatus.IDLE

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def reset(self) -> None:
        """Clear all runtime state."""
        self.processing = False
        self.last_error = None
        self.has_been_processed = False
        self.content = None
        self.content_type = None
        self.input_content = None
        self.last_input_source = None


class NodeSpec(BaseNodeSpec):
    """A plain transformation step."""

    kind: Literal["plain"] = "plain"


class SplitterNodeSpec(BaseNodeSpec):
    """
    Splits its (optionally pre-processed) input into items and runs every
    successor once per item.

    Example:
        SplitterNodeSpec(id="topics", delimiter=",", parallel=False, max_items=5)
    """

    kind: Literal["splitter"] = "splitter"

    delimiter: str = Field(
        default="\n", description="Item separator; '\\n' and '\\t' escapes are accepted"
    )
    parallel: bool = Field(default=True, description="Dispatch items concurrently")
    max_items: int = Field(default=10, ge=1, description="Items beyond this are dropped")

    last_split_items: list[str] = Field(default_factory=list)

    def reset(self) -> None:
        super().reset()
        self.last_split_items = []


class ConditionalNodeSpec(BaseNodeSpec):
    """
    Evaluates its output against a success token. On failure it re-drives
    the upstream node that fed it with corrective feedback, at most
    max_iterations times per loop.
    """

    kind: Literal["conditional"] = "conditional"

    success_token: str = Field(default="PASS", description="Marker the output must contain")
    max_iterations: int = Field(default=3, ge=1)

    current_iteration: int = 0
    loop_active: bool = False
    feedback_node: str | None = Field(
        default=None, description="Node currently receiving corrective feedback"
    )

    def reset_loop(self) -> None:
        self.current_iteration = 0
        self.loop_active = False
        self.feedback_node = None

    def reset(self) -> None:
        super().reset()
        self.reset_loop()


class CombineMethod(StrEnum):
    """How a collector joins the items it gathered."""

    CONCATENATE = "concatenate"
    LIST = "list"
    SUMMARIZE = "summarize"


class CollectorNodeSpec(BaseNodeSpec):
    """
    Gathers the per-item results of upstream splitters and emits them as one
    output once every expected item has arrived.

    Items are keyed by the splitter that produced them and their 1-based
    index, so results arriving out of order are still combined in item
    order. Input that did not come through a splitter is keyed by its
    source node.

    Example:
        CollectorNodeSpec(id="merge", combine_method="list")
    """

    kind: Literal["collector"] = "collector"

    instruction: str = Field(
        default="Collect and combine all inputs into a cohesive output.",
        description="System prompt for the summarize method",
    )

    combine_method: CombineMethod = CombineMethod.CONCATENATE
    separator: str = Field(default="\n\n", description="Joins items for concatenate/summarize")
    wait_for_all_inputs: bool = Field(
        default=True, description="Hold output until every expected item has arrived"
    )

    collected_items: dict[str, Any] = Field(default_factory=dict)
    expected_items: dict[str, int] = Field(
        default_factory=dict, description="Item count announced by each upstream splitter"
    )

    def reset_collection(self) -> None:
        self.collected_items = {}
        self.expected_items = {}

    def reset(self) -> None:
        super().reset()
        self.reset_collection()


def _node_kind(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("kind", NodeKind.PLAIN))
    return str(getattr(value, "kind", NodeKind.PLAIN))


AnyNode = Annotated[
    Union[
        Annotated[NodeSpec, Tag("plain")],
        Annotated[SplitterNodeSpec, Tag("splitter")],
        Annotated[ConditionalNodeSpec, Tag("conditional")],
        Annotated[CollectorNodeSpec, Tag("collector")],
    ],
    Discriminator(_node_kind),
]

"""Validated action union.

Every action an agent can ask for is one variant of a closed union keyed
on ``type``. Raw JSON (camelCase) and Python (snake_case) input are both
accepted. Parsing is all-or-nothing: a malformed action raises
ActionValidationError before anything touches the browser.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from ..config import SessionOptions
from ..errors import ActionValidationError

ElementState = Literal["attached", "detached", "visible", "hidden"]
WaitUntil = Literal["load", "domcontentloaded", "networkidle"]


class SchemaModel(BaseModel):
    """Base for all action payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Targets
# =============================================================================


class NodeIdTarget(SchemaModel):
    kind: Literal["node"]
    node_id: str = Field(..., min_length=1)


class StableRefTarget(SchemaModel):
    kind: Literal["stableRef"]
    value: str = Field(..., min_length=1)


class RoleNameTarget(SchemaModel):
    kind: Literal["roleName"]
    role: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class CssTarget(SchemaModel):
    kind: Literal["css"]
    selector: str = Field(..., min_length=1)


NodeTarget = Annotated[
    Union[NodeIdTarget, StableRefTarget, RoleNameTarget, CssTarget],
    Field(discriminator="kind"),
]


# =============================================================================
# Wait conditions
# =============================================================================


class TimeoutWait(SchemaModel):
    kind: Literal["timeout"]
    ms: int = Field(..., ge=0)


class SelectorWait(SchemaModel):
    kind: Literal["selector"]
    selector: str = Field(..., min_length=1)
    state: Optional[ElementState] = None


class NetworkIdleWait(SchemaModel):
    kind: Literal["network_idle"]


class NetworkResponseWait(SchemaModel):
    """Wait for a response matching every given predicate."""

    kind: Literal["network_response"]
    url_contains: Optional[str] = Field(None, min_length=1)
    url_matches: Optional[str] = Field(None, min_length=1)
    method: Optional[str] = Field(None, min_length=1)
    status: Optional[int] = Field(None, ge=100, le=599)
    status_min: Optional[int] = Field(None, ge=100, le=599)
    status_max: Optional[int] = Field(None, ge=100, le=599)
    body_includes: Optional[str] = Field(None, min_length=1)
    body_matches: Optional[str] = Field(None, min_length=1)
    ignore_case: Optional[bool] = None

    @model_validator(mode="after")
    def validate_predicates(self) -> "NetworkResponseWait":
        predicates = (
            self.url_contains,
            self.url_matches,
            self.method,
            self.status,
            self.status_min,
            self.status_max,
            self.body_includes,
            self.body_matches,
        )
        if all(value is None for value in predicates):
            raise ValueError(
                "network_response wait requires at least one predicate (url/method/status/body)"
            )
        if (
            self.status_min is not None
            and self.status_max is not None
            and self.status_min > self.status_max
        ):
            raise ValueError("statusMin must be less than or equal to statusMax")
        return self


WaitCondition = Annotated[
    Union[TimeoutWait, SelectorWait, NetworkIdleWait, NetworkResponseWait],
    Field(discriminator="kind"),
]


# =============================================================================
# Assert conditions
# =============================================================================


class SelectorAssert(SchemaModel):
    kind: Literal["selector"]
    selector: str = Field(..., min_length=1)
    state: Optional[ElementState] = None
    text_contains: Optional[str] = None


class SelectorBBoxMinAssert(SchemaModel):
    kind: Literal["selector_bbox_min"]
    selector: str = Field(..., min_length=1)
    min_width: float = Field(..., gt=0)
    min_height: float = Field(..., gt=0)
    require_count: Optional[int] = Field(None, gt=0)


class SelectorOverlapMaxAssert(SchemaModel):
    kind: Literal["selector_overlap_max"]
    selector_a: str = Field(..., min_length=1)
    selector_b: str = Field(..., min_length=1)
    max_overlap_ratio: float = Field(..., ge=0, le=1)


class UrlContainsAssert(SchemaModel):
    kind: Literal["url_contains"]
    value: str = Field(..., min_length=1)


class TitleContainsAssert(SchemaModel):
    kind: Literal["title_contains"]
    value: str = Field(..., min_length=1)


AssertCondition = Annotated[
    Union[
        SelectorAssert,
        SelectorBBoxMinAssert,
        SelectorOverlapMaxAssert,
        UrlContainsAssert,
        TitleContainsAssert,
    ],
    Field(discriminator="kind"),
]


# =============================================================================
# Actions
# =============================================================================


class TimedAction(SchemaModel):
    timeout_ms: Optional[int] = Field(None, gt=0)


class TargetedAction(TimedAction):
    """An action aimed at one element, by snapshot node id or by target descriptor."""

    node_id: Optional[str] = Field(None, min_length=1)
    target: Optional[NodeTarget] = None

    @model_validator(mode="after")
    def validate_target(self) -> "TargetedAction":
        if not self.node_id and self.target is None:
            raise ValueError("Either nodeId or target is required")
        return self


class NavigateAction(TimedAction):
    type: Literal["navigate"]
    url: str = Field(..., min_length=1)
    wait_until: Optional[WaitUntil] = None


class ClickAction(TargetedAction):
    type: Literal["click"]


class FillAction(TargetedAction):
    type: Literal["fill"]
    value: str


class SelectAction(TargetedAction):
    type: Literal["select"]
    value: str


class PressAction(TimedAction):
    type: Literal["press"]
    key: str = Field(..., min_length=1)


class PauseAction(TimedAction):
    type: Literal["pause"]
    mode: Optional[Literal["enter", "timeout"]] = None
    note: Optional[str] = None


class AssertAction(TimedAction):
    type: Literal["assert"]
    condition: AssertCondition


class HandleConsentAction(TimedAction):
    type: Literal["handleConsent"]
    mode: Optional[Literal["accept", "reject"]] = None
    require_found: Optional[bool] = None


class WaitForAction(TimedAction):
    type: Literal["waitFor"]
    condition: WaitCondition


class SnapshotAction(SchemaModel):
    type: Literal["snapshot"]


class SetViewportAction(SchemaModel):
    type: Literal["setViewport"]
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class MockRoute(SchemaModel):
    """A canned response for requests matching method and URL glob."""

    method: Optional[str] = Field(None, min_length=1)
    url_pattern: str = Field(..., min_length=1)
    status: Optional[int] = Field(None, ge=100, le=599)
    headers: Optional[dict[str, str]] = None
    content_type: Optional[str] = None
    body: Optional[str] = None
    json_body: Optional[Any] = Field(None, alias="json")


class MockAction(SchemaModel):
    type: Literal["mock"]
    route: MockRoute


class CheckpointAction(SchemaModel):
    type: Literal["checkpoint"]
    name: str = Field(..., min_length=1)
    root_dir: Optional[str] = Field(None, min_length=1)


Action = Annotated[
    Union[
        NavigateAction,
        ClickAction,
        FillAction,
        SelectAction,
        PressAction,
        PauseAction,
        AssertAction,
        HandleConsentAction,
        WaitForAction,
        SnapshotAction,
        SetViewportAction,
        MockAction,
        CheckpointAction,
    ],
    Field(discriminator="type"),
]


class ScriptDocument(SchemaModel):
    settings: Optional[SessionOptions] = None

    def settings_overrides(self) -> dict[str, Any]:
        """Only the settings the script explicitly set, keyed by field name."""
        if self.settings is None:
            return {}
        return self.settings.model_dump(exclude_unset=True)


class ActionScript(ScriptDocument):
    """A batch of actions with optional session settings."""

    actions: list[Action] = Field(..., min_length=1)


# =============================================================================
# Loop scripts
# =============================================================================

SnapshotField = Literal["url", "title", "domHash", "nodeCount", "interactiveCount"]
SnapshotOperator = Literal["contains", "equals", "not_equals", "gt", "gte", "lt", "lte"]


class SnapshotPredicate(SchemaModel):
    """Compare one field of the observation snapshot against a value."""

    kind: Literal["snapshot"]
    field: SnapshotField
    operator: SnapshotOperator
    value: Union[int, float, str]
    negate: bool = False


class AssertPredicate(SchemaModel):
    """Run an assert action; the predicate holds when it finishes ok."""

    kind: Literal["assert"]
    condition: AssertCondition
    timeout_ms: Optional[int] = Field(None, gt=0)
    negate: bool = False


LoopPredicate = Annotated[
    Union[SnapshotPredicate, AssertPredicate],
    Field(discriminator="kind"),
]


class LoopBranch(SchemaModel):
    label: Optional[str] = Field(None, min_length=1)
    match: Literal["all", "any"] = "all"
    when: list[LoopPredicate] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    next: Literal["continue", "break"] = "continue"


class LoopScript(ScriptDocument):
    """Action, observe, branch: repeat ``step_action`` and follow the first matching branch."""

    setup_actions: list[Action] = Field(default_factory=list)
    step_action: Action
    branches: list[LoopBranch] = Field(..., min_length=1)
    max_iterations: Optional[int] = Field(None, gt=0)
    continue_on_step_error: bool = False
    capture_observation_snapshot: bool = True


_action_adapter: TypeAdapter = TypeAdapter(Action)


def _validation_failure(prefix: str, exc: ValidationError) -> ActionValidationError:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
        for error in exc.errors()
    )
    return ActionValidationError(f"{prefix}: {details}", errors=exc.errors(include_url=False))


def parse_action(raw: Any) -> Action:
    """Validate a raw action (dict or already-built model)."""
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True, exclude_none=True)
    try:
        return _action_adapter.validate_python(raw)
    except ValidationError as e:
        raise _validation_failure("Invalid action", e) from e


def parse_actions(raw: Any) -> list[Action]:
    """Validate a single action or a list of actions."""
    items = raw if isinstance(raw, list) else [raw]
    return [parse_action(item) for item in items]


def parse_script(raw: Any) -> ActionScript:
    """Validate a script document: ``{settings?, actions: [...]}``."""
    try:
        return ActionScript.model_validate(raw)
    except ValidationError as e:
        raise _validation_failure("Invalid script", e) from e


def parse_loop_script(raw: Any) -> LoopScript:
    """Validate a loop document: ``{settings?, setupActions?, stepAction, branches: [...]}``."""
    try:
        return LoopScript.model_validate(raw)
    except ValidationError as e:
        raise _validation_failure("Invalid loop script", e) from e

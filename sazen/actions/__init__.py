"""Action schema: the closed set of operations a session can perform."""

from .schema import (
    Action,
    ActionScript,
    AssertAction,
    AssertCondition,
    CheckpointAction,
    ClickAction,
    CssTarget,
    FillAction,
    HandleConsentAction,
    LoopBranch,
    LoopPredicate,
    LoopScript,
    MockAction,
    MockRoute,
    NavigateAction,
    NodeIdTarget,
    NodeTarget,
    PauseAction,
    PressAction,
    RoleNameTarget,
    SelectAction,
    SetViewportAction,
    SnapshotAction,
    StableRefTarget,
    WaitCondition,
    WaitForAction,
    parse_action,
    parse_actions,
    parse_loop_script,
    parse_script,
)

__all__ = [
    "Action",
    "ActionScript",
    "AssertAction",
    "AssertCondition",
    "CheckpointAction",
    "ClickAction",
    "CssTarget",
    "FillAction",
    "HandleConsentAction",
    "LoopBranch",
    "LoopPredicate",
    "LoopScript",
    "MockAction",
    "MockRoute",
    "NavigateAction",
    "NodeIdTarget",
    "NodeTarget",
    "PauseAction",
    "PressAction",
    "RoleNameTarget",
    "SelectAction",
    "SetViewportAction",
    "SnapshotAction",
    "StableRefTarget",
    "WaitCondition",
    "WaitForAction",
    "parse_action",
    "parse_actions",
    "parse_loop_script",
    "parse_script",
]

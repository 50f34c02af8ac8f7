"""Wizard step flows and the transition table."""

from __future__ import annotations

from schedbot.core.errors import ValidationError
from schedbot.core.schedule.types import ActionKind, WizardState, WizardStep

S = WizardStep

FLOWS: dict[ActionKind, tuple[WizardStep, ...]] = {
    ActionKind.PROMPT: (
        S.AWAITING_PROMPT,
        S.AWAITING_HOUR,
        S.AWAITING_MINUTE,
        S.AWAITING_REPEAT,
        S.AWAITING_CONFIRM,
    ),
    ActionKind.PAYMENT: (
        S.AWAITING_RECIPIENT,
        S.AWAITING_TOKEN,
        S.AWAITING_AMOUNT,
        S.AWAITING_DATE,
        S.AWAITING_HOUR,
        S.AWAITING_MINUTE,
        S.AWAITING_REPEAT,
        S.AWAITING_CONFIRM,
    ),
}

# Edit-menu field name → step the wizard re-enters
EDIT_FIELDS: dict[ActionKind, dict[str, WizardStep]] = {
    ActionKind.PROMPT: {
        "prompt": S.AWAITING_PROMPT,
        "time": S.AWAITING_HOUR,
        "repeat": S.AWAITING_REPEAT,
    },
    ActionKind.PAYMENT: {
        "recipient": S.AWAITING_RECIPIENT,
        "token": S.AWAITING_TOKEN,
        "amount": S.AWAITING_AMOUNT,
        "date": S.AWAITING_DATE,
        "repeat": S.AWAITING_REPEAT,
    },
}

# In edit mode a date is followed by its time, and an hour by its minute.
EDIT_CHAINS: dict[WizardStep, WizardStep] = {
    S.AWAITING_DATE: S.AWAITING_HOUR,
    S.AWAITING_HOUR: S.AWAITING_MINUTE,
}


def first_step(kind: ActionKind) -> WizardStep:
    return FLOWS[kind][0]


def next_step(kind: ActionKind, step: WizardStep, editing: bool = False) -> WizardStep:
    flow = FLOWS[kind]
    if step not in flow or step is S.AWAITING_CONFIRM:
        raise ValidationError(f"No step follows {step.value} for {kind.value}")
    if editing:
        return EDIT_CHAINS.get(step, S.AWAITING_CONFIRM)
    return flow[flow.index(step) + 1]


def allowed(kind: ActionKind, src: WizardStep, dst: WizardStep, editing: bool = False) -> bool:
    """True when ``src → dst`` is a legal transition."""
    flow = FLOWS[kind]
    if src not in flow or dst not in flow:
        return False
    if src is S.AWAITING_CONFIRM:
        return editing and dst is not S.AWAITING_CONFIRM
    return dst is next_step(kind, src, editing)


def advance(state: WizardState) -> WizardStep:
    """Move ``state`` to the step that follows its current one."""
    state.step = next_step(state.kind, state.step, state.editing)
    return state.step


def enter_edit(state: WizardState, field: str) -> WizardStep:
    """Jump from the confirmation step back to a single field."""
    target = EDIT_FIELDS[state.kind].get(field)
    if target is None:
        raise ValidationError(f"❌ Unknown field: {field}")
    if not allowed(state.kind, state.step, target, editing=True):
        raise ValidationError("❌ Finish the current step before editing another field")
    state.step = target
    return target

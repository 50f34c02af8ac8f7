"""Schedule wizard: step table, keyboards, flow and record controls."""

from schedbot.wizard.controls import ScheduleControls
from schedbot.wizard.flow import Wizard, WizardReply
from schedbot.wizard.keyboards import InlineButton, Keyboard

__all__ = ["InlineButton", "Keyboard", "ScheduleControls", "Wizard", "WizardReply"]

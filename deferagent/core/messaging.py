"""
User-facing message templates and their rendering.

Templates use the placeholders %UPDATE_LIST%, %DEFER_HOURS%, %DEADLINE_DATE%
and %SUPPORT_CONTACT%. Two kinds of optional region are recognised:

    {{...}}  the deferral offer, removed on the final prompt before the deadline
    <<...>>  restart wording, removed when no pending update needs a restart
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..utils.time_utils import (
    VERY_SOON,
    DEADLINE_DATE_FORMAT,
    HEADING_DATE_FORMAT,
    format_timestamp,
    remaining_time_phrase
)

MSG_INSTALL_OR_DEFER_HEADING = "Updates are available"
MSG_INSTALL_OR_DEFER = (
    "Your Mac needs to install updates for %UPDATE_LIST% by %DEADLINE_DATE%.\n\n"
    "Please save your work and install all available updates. "
    "{{If now is not a good time, you may defer to delay this message until later. }}"
    "These updates will be required %DEFER_HOURS%<<, forcing your Mac to restart after they are installed>>.\n\n"
    "Please contact %SUPPORT_CONTACT% for any questions."
)

MSG_INSTALL_HEADING = "Please install updates now"
MSG_INSTALL = (
    "Your Mac is about to install updates for %UPDATE_LIST%<< and restart>>.\n\n"
    "Please save your work and install all available updates before the deadline."
    "<< Your Mac will restart when all updates are finished installing.>>\n\n"
    "Please contact %SUPPORT_CONTACT% for any questions."
)

MSG_INSTALL_NOW_HEADING = "Updates are available"
MSG_INSTALL_NOW = (
    "Your Mac needs to install updates for %UPDATE_LIST%<< which require a restart>>.\n\n"
    "Please save your work, open System Preferences -> Software Update, and install all available updates."
    "<< Your Mac will restart when all updates are finished installing.>>\n\n"
    "Please contact %SUPPORT_CONTACT% for any questions."
)

MSG_UPDATING_HEADING = "Installing updates..."
MSG_UPDATING = (
    "Installing updates for %UPDATE_LIST% in the background."
    "<< Your Mac will restart automatically when this is finished.>> "
    "Please contact %SUPPORT_CONTACT% for any questions."
)

REGION_DEFERRAL_OFFER = "deferral_offer"
REGION_RESTART = "restart"
REGION_DELIMITERS = {
    "{{": ("}}", REGION_DEFERRAL_OFFER),
    "<<": (">>", REGION_RESTART),
}

FALLBACK_UPDATE_LIST = "pending software updates"


@dataclass(frozen=True)
class Message:
    heading: str
    body: str


def format_update_list(titles: Iterable[str]) -> str:
    """
    Joins update titles for display, with an Oxford comma.

    :param titles: Update titles in display order
    :type titles: Iterable[str]
    :return: e.g. "A", "A and B" or "A, B, and C"
    :rtype: str
    """
    items = [title.strip() for title in titles if title and title.strip()]
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return f"{items[0]} and {items[1]}"
    return f"{', '.join(items[:-1])}, and {items[-1]}"


def parse_regions(template: str) -> List[Tuple[Optional[str], str]]:
    """
    Splits a template into plain text and named optional regions.

    :param template: Message template
    :type template: str
    :return: (region name or None for plain text, text) pairs in order
    :rtype: List[Tuple[Optional[str], str]]
    :raises ValueError: if a region is opened but never closed
    """
    segments: List[Tuple[Optional[str], str]] = []
    literal_start = 0
    position = 0
    while position < len(template):
        opener = template[position:position + 2]
        if opener not in REGION_DELIMITERS:
            position += 1
            continue
        closer, region = REGION_DELIMITERS[opener]
        end = template.find(closer, position + 2)
        if end == -1:
            raise ValueError(f"Unterminated '{opener}' region at offset {position}")
        if position > literal_start:
            segments.append((None, template[literal_start:position]))
        segments.append((region, template[position + 2:end]))
        position = literal_start = end + 2
    if literal_start < len(template):
        segments.append((None, template[literal_start:]))
    return segments


def apply_regions(template: str, restart_required: bool, is_final_prompt: bool) -> str:
    """
    Keeps or removes the optional regions of a template.

    A kept region loses only its delimiters; a removed region loses its text too.

    :param template: Message template
    :type template: str
    :param restart_required: Whether restart wording stays in the message
    :type restart_required: bool
    :param is_final_prompt: Whether this is the last prompt before the deadline
    :type is_final_prompt: bool
    :return: The template without region markers
    :rtype: str
    """
    keep = {
        REGION_DEFERRAL_OFFER: not is_final_prompt,
        REGION_RESTART: restart_required,
    }
    return "".join(text for region, text in parse_regions(template) if region is None or keep[region])


def fill_placeholders(text: str, values: Dict[str, str]) -> str:
    """Replaces each ``%NAME%`` placeholder named in ``values``; others are left as they are."""
    for name, value in values.items():
        text = text.replace(f"%{name}%", value)
    return text


def deadline_phrase(remaining: int) -> str:
    """
    Says when updates become required: "after 3 days", or "very soon" once
    less than a minute is left.
    """
    phrase = remaining_time_phrase(remaining)
    return phrase if phrase == VERY_SOON else f"after {phrase}"


class MessageRenderer:
    """
    Renders the agent's messages for one invocation.

    The update list, restart requirement and support contact are fixed for the
    invocation; time-dependent parts are passed to each render call.
    """

    def __init__(self, update_list: Optional[str], restart_required: bool, support_contact: str):
        self.update_list = update_list or FALLBACK_UPDATE_LIST
        self.restart_required = restart_required
        self.support_contact = support_contact

    def _fill(self, template: str, is_final_prompt: bool = False, **extra: str) -> str:
        text = apply_regions(template, self.restart_required, is_final_prompt)
        values = {
            "UPDATE_LIST": self.update_list,
            "SUPPORT_CONTACT": self.support_contact,
        }
        values.update(extra)
        return fill_placeholders(text, values)

    def install_or_defer(self, remaining: int, deadline: int, deferral_period: int) -> Message:
        """
        Renders the install-or-defer prompt.

        The deferral offer is dropped once a full deferral period no longer
        fits before the deadline.

        :param remaining: Seconds until the deadline
        :type remaining: int
        :param deadline: Deadline as epoch seconds
        :type deadline: int
        :param deferral_period: Seconds a deferral postpones the next prompt
        :type deferral_period: int
        :return: Heading and body of the prompt
        :rtype: Message
        """
        is_final_prompt = not deferral_period < remaining
        body = self._fill(
            MSG_INSTALL_OR_DEFER,
            is_final_prompt,
            DEFER_HOURS=deadline_phrase(remaining),
            DEADLINE_DATE=format_timestamp(deadline, DEADLINE_DATE_FORMAT)
        )
        heading = fill_placeholders(
            MSG_INSTALL_OR_DEFER_HEADING,
            {"DEADLINE_DATE": format_timestamp(deadline, HEADING_DATE_FORMAT)}
        )
        return Message(heading, body)

    def install(self) -> Message:
        return Message(MSG_INSTALL_HEADING, self._fill(MSG_INSTALL))

    def install_now(self) -> Message:
        return Message(MSG_INSTALL_NOW_HEADING, self._fill(MSG_INSTALL_NOW))

    def updating(self) -> Message:
        return Message(MSG_UPDATING_HEADING, self._fill(MSG_UPDATING))

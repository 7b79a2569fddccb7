"""Entity tags: ``<kind>-<id>`` strings naming machines, models, users and controllers."""

from __future__ import annotations

import re
from dataclasses import dataclass

MACHINE_TAG_KIND = "machine"
MODEL_TAG_KIND = "model"
USER_TAG_KIND = "user"
CONTROLLER_TAG_KIND = "controller"

KNOWN_TAG_KINDS = (
    MACHINE_TAG_KIND,
    MODEL_TAG_KIND,
    USER_TAG_KIND,
    CONTROLLER_TAG_KIND,
    "unit",
    "application",
    "action",
    "cloud",
    "cloudcred",
)

_NUMBER = r"(?:0|[1-9][0-9]*)"
MACHINE_ID_PATTERN = re.compile(rf"^{_NUMBER}(?:/[a-z]+/{_NUMBER})*$")


class InvalidTagError(ValueError):
    """Raised when a string is not a well-formed tag of the expected kind."""


def is_valid_machine_id(machine_id: str) -> bool:
    return MACHINE_ID_PATTERN.fullmatch(machine_id) is not None


@dataclass(frozen=True)
class MachineTag:
    machine_id: str

    @property
    def kind(self) -> str:
        return MACHINE_TAG_KIND

    def __str__(self) -> str:
        return f"{MACHINE_TAG_KIND}-{self.machine_id.replace('/', '-')}"


def _split_tag(text: str) -> tuple[str, str]:
    kind, sep, tag_id = text.partition("-")
    if not sep or kind not in KNOWN_TAG_KINDS or not tag_id:
        raise InvalidTagError(f'"{text}" is not a valid tag')
    return kind, tag_id


def parse_machine_tag(text: str) -> MachineTag:
    """Parse ``machine-0`` or ``machine-0-lxd-1`` into a :class:`MachineTag`."""
    kind, tag_id = _split_tag(text)
    machine_id = tag_id.replace("-", "/")
    if kind != MACHINE_TAG_KIND or not is_valid_machine_id(machine_id):
        raise InvalidTagError(f'"{text}" is not a valid {MACHINE_TAG_KIND} tag')
    return MachineTag(machine_id)


def model_tag(model_uuid: str) -> str:
    return f"{MODEL_TAG_KIND}-{model_uuid}"


def controller_tag(controller_uuid: str) -> str:
    return f"{CONTROLLER_TAG_KIND}-{controller_uuid}"


def user_tag(user: str) -> str:
    # Local users are stored either bare or with the @local domain.
    name = user.strip().removesuffix("@local")
    if not name:
        raise InvalidTagError(f'"{user}" is not a valid user name')
    return f"{USER_TAG_KIND}-{name}"


def tag_id(tag: str, *, kind: str) -> str:
    parsed_kind, parsed_id = _split_tag(tag)
    if parsed_kind != kind:
        raise InvalidTagError(f'"{tag}" is not a valid {kind} tag')
    return parsed_id

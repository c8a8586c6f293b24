"""Parsing of secret references given to the fetch command."""

import re
from collections.abc import Sequence
from dataclasses import dataclass

OUTPUT_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
FULL_NAME = re.compile(
    r"^projects/(?P<project>[^/]+)/secrets/(?P<secret>[^/]+)"
    r"(?:/versions/(?P<version>[^/]+))?$"
)
SHORT_NAME = re.compile(r"^(?P<secret>[A-Za-z0-9_-]+)(?:@(?P<version>latest|\d+))?$")


@dataclass(frozen=True, kw_only=True)
class SecretReference:
    """One secret to read and the step output it is written to."""

    output: str
    secret_id: str
    project: str | None = None
    version: str = "latest"

    def resource_name(self, default_project: str) -> str:
        """Version resource name to access."""
        project = self.project or default_project
        return f"projects/{project}/secrets/{self.secret_id}/versions/{self.version}"

    @classmethod
    def parse(cls, text: str) -> "SecretReference":
        """Parse `[output:]secret`.

        `secret` is `name`, `name@version` or
        `projects/{p}/secrets/{name}[/versions/{v}]`.
        """
        text = text.strip()
        output: str | None = None
        head, sep, tail = text.partition(":")
        if sep and not head.startswith("projects/"):
            output, text = head.strip(), tail.strip()

        if match := FULL_NAME.match(text):
            reference = cls(
                output=output or match.group("secret"),
                secret_id=match.group("secret"),
                project=match.group("project"),
                version=match.group("version") or "latest",
            )
        elif match := SHORT_NAME.match(text):
            reference = cls(
                output=output or match.group("secret"),
                secret_id=match.group("secret"),
                version=match.group("version") or "latest",
            )
        else:
            raise ValueError(f"Invalid secret reference '{text}'")

        if not OUTPUT_NAME.match(reference.output):
            raise ValueError(f"Invalid output name '{reference.output}'")
        return reference


def parse_secret_references(text: str) -> Sequence[SecretReference]:
    """Parse newline or comma separated references; output names are unique."""
    references = [
        SecretReference.parse(item)
        for line in text.splitlines()
        for item in line.split(",")
        if item.strip()
    ]
    seen: set[str] = set()
    for reference in references:
        if reference.output in seen:
            raise ValueError(f"Duplicate output name '{reference.output}'")
        seen.add(reference.output)
    return references

"""
Student profile registry.

Profiles are static descriptors that only shape prompt content.
"""

from dataclasses import dataclass


class ProfileNotFoundError(KeyError):
    """Raised when a profile id is not in the registry."""


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    grade: str  # shown as "class" in the UI, e.g. "9th Class"
    avatar: str
    description: str

    def prompt_description(self) -> str:
        """Profile text sent to the tutor: "{name}, {class}, {description}"."""
        return f"{self.name}, {self.grade}, {self.description}"


PROFILES: dict[str, Profile] = {
    "deepak": Profile(
        id="deepak",
        name="Deepak",
        grade="9th Class",
        avatar="/avatars/deepak.png",
        description="IIT Foundation track, focus: Mathematics first, then Science. Slow learner.",
    ),
}


def list_profiles() -> list[Profile]:
    return list(PROFILES.values())


def get_profile(profile_id: str) -> Profile:
    try:
        return PROFILES[profile_id]
    except KeyError:
        raise ProfileNotFoundError(profile_id) from None

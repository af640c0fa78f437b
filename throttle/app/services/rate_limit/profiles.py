"""Named throttling policies.

The registry is built once per process and is read-only afterwards. Adding
a policy means adding an entry to DEFAULT_PROFILES; nothing else changes.
"""

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Optional

from throttle.app.exceptions import ConfigError
from throttle.app.services.rate_limit.models import IdentificationMode, Profile

IP = IdentificationMode.IP
SESSION = IdentificationMode.SESSION

DEFAULT_PROFILES: tuple[Profile, ...] = (
    # Brute-force protection for login/registration
    Profile("auth", 5, 15 * 60, "rl:auth", IP),
    Profile("password_reset", 3, 60 * 60, "rl:password", IP),
    Profile("email_verify", 3, 60 * 60, "rl:email-verify", IP),
    Profile("checkout", 10, 60, "rl:checkout", IP),
    # Prevents scraping while allowing browsing
    Profile("search", 30, 60, "rl:search", IP),
    Profile("upload", 10, 10 * 60, "rl:upload", IP),
    Profile("api", 100, 60, "rl:api", IP),
    Profile("admin", 200, 60, "rl:admin", SESSION),
    Profile("cart", 100, 60 * 60, "rl:cart", SESSION),
    Profile("data_export", 5, 60 * 60, "rl:gdpr-export", SESSION),
    Profile("data_deletion", 3, 24 * 60 * 60, "rl:gdpr-delete", SESSION),
)


def validate_profile(profile: Profile) -> None:
    """Raise ConfigError if a profile could never be enforced correctly."""
    if not profile.name:
        raise ConfigError("Rate limit profile name must not be empty")
    if profile.max_requests <= 0:
        raise ConfigError(
            f"Profile '{profile.name}': max_requests must be positive, got {profile.max_requests}"
        )
    if profile.window_seconds <= 0:
        raise ConfigError(
            f"Profile '{profile.name}': window_seconds must be positive, got {profile.window_seconds}"
        )
    if not profile.key_prefix or not profile.key_prefix.strip():
        raise ConfigError(f"Profile '{profile.name}': key_prefix must not be empty")
    if not isinstance(profile.identification, IdentificationMode):
        raise ConfigError(
            f"Profile '{profile.name}': unknown identification mode {profile.identification!r}"
        )


class ProfileRegistry(Mapping[str, Profile]):
    """Immutable table of profiles keyed by name.

    Construction fails fast with ConfigError on an invalid profile, a
    duplicate name, or two profiles sharing a key prefix (their buckets
    would collide in the store).
    """

    def __init__(self, profiles: Iterable[Profile] = DEFAULT_PROFILES) -> None:
        table: dict[str, Profile] = {}
        prefixes: dict[str, str] = {}
        for profile in profiles:
            validate_profile(profile)
            if profile.name in table:
                raise ConfigError(f"Duplicate rate limit profile '{profile.name}'")
            owner = prefixes.get(profile.key_prefix)
            if owner is not None:
                raise ConfigError(
                    f"Profiles '{owner}' and '{profile.name}' share key prefix '{profile.key_prefix}'"
                )
            table[profile.name] = profile
            prefixes[profile.key_prefix] = profile.name
        self._profiles = MappingProxyType(table)

    def lookup(self, name: str) -> Profile:
        """Return the profile registered under name.

        Raises:
            ConfigError: If no such profile exists
        """
        try:
            return self._profiles[name]
        except KeyError:
            raise ConfigError(f"Unknown rate limit profile '{name}'") from None

    def resolve(self, profile: "Profile | str") -> Profile:
        """Accept either a Profile or a registry name."""
        if isinstance(profile, Profile):
            return profile
        return self.lookup(profile)

    def __getitem__(self, name: str) -> Profile:
        return self._profiles[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def __repr__(self) -> str:
        return f"ProfileRegistry({sorted(self._profiles)})"


# Global registry instance (singleton pattern)
_registry: Optional[ProfileRegistry] = None


def get_profile_registry() -> ProfileRegistry:
    """Get or build the process-wide registry from DEFAULT_PROFILES."""
    global _registry
    if _registry is None:
        _registry = ProfileRegistry(DEFAULT_PROFILES)
    return _registry


def reset_profile_registry() -> None:
    """Reset the global registry. This is primarily useful for testing."""
    global _registry
    _registry = None

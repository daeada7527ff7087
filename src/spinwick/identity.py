"""Environment identifiers derived from a pull request.

Two identifiers are computed for every SpinWick:

- The repeatable ID, ``<repo>-pr-<number>``, is a pure function of the
  repository name and PR number. It is used as the provisioner owner ID and
  the Kubernetes namespace, so "does an environment already exist for this
  PR" never needs external state.
- The unique ID appends a random suffix so every environment gets a fresh DNS
  name. The repository segment is shortened until the full hostname fits the
  64 character DNS name limit.
"""

import secrets
import string
from dataclasses import dataclass
from typing import Optional


DNS_NAME_LIMIT = 64
RANDOM_SUFFIX_LENGTH = 5

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def repeatable_id(repo_name: str, pr_number: int) -> str:
    """Return the deterministic environment ID for a pull request.

    Example:
        >>> repeatable_id("Test-Repo", 456)
        'test-repo-pr-456'
    """
    return f"{repo_name}-pr-{pr_number}".lower()


def random_suffix(length: int = RANDOM_SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def unique_id(
    repo_name: str,
    pr_number: int,
    base_domain: str,
    suffix: Optional[str] = None,
) -> str:
    """Return a DNS-safe, globally unique environment ID.

    Only the repository segment is shortened; ``-pr-<number>`` and the random
    suffix are always kept whole. Characters are trimmed from the head of
    the repository name, so its end survives. When the domain alone leaves
    no room the repository segment is clamped to empty and the bound may
    still be exceeded.

    Args:
        repo_name: Repository name.
        pr_number: Pull request number.
        base_domain: DNS domain the ID is prefixed to, including its leading
            dot (e.g. ``.test.example.cloud``).
        suffix: Fixed random suffix, for deterministic tests.

    Returns:
        Lower-cased ID such that ``len(id) + len(base_domain) <= 64``
        whenever that is achievable.
    """
    tail = f"-pr-{pr_number}-{suffix or random_suffix()}".lower()
    budget = DNS_NAME_LIMIT - len(base_domain) - len(tail)
    repo = repo_name.lower()
    repo_segment = repo[max(len(repo) - budget, 0) :] if budget > 0 else ""
    return f"{repo_segment}{tail}"


@dataclass(frozen=True)
class EnvironmentIdentity:
    """Identifiers and address of one SpinWick environment.

    Attributes:
        repeatable_id: Stable ID used for lookups and ownership.
        unique_id: Random-suffixed ID used for the DNS name.
        base_domain: DNS domain the unique ID lives under.
    """

    repeatable_id: str
    unique_id: str
    base_domain: str

    @classmethod
    def create(
        cls, repo_name: str, pr_number: int, base_domain: str
    ) -> "EnvironmentIdentity":
        return cls(
            repeatable_id=repeatable_id(repo_name, pr_number),
            unique_id=unique_id(repo_name, pr_number, base_domain),
            base_domain=base_domain,
        )

    @property
    def dns(self) -> str:
        return f"{self.unique_id}{self.base_domain}"

    @property
    def url(self) -> str:
        return f"https://{self.dns}"

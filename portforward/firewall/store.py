"""iptables rule store with check/append/delete primitives."""

import logging
import subprocess
from typing import Callable, List, Optional

from ..constants import DEFAULT_TIMEOUT, IPTABLES
from ..errors import RuleStoreError
from ..utils import run
from .rules import RuleSpec

logger = logging.getLogger(__name__)

# iptables -C exits 1 when the rule is simply not there
RULE_ABSENT = 1


class RuleStore:
    """Interface to the live NAT rule state."""

    # True when insert and delete only report what they would do
    dry_run = False

    def exists(self, rule: RuleSpec) -> bool:
        raise NotImplementedError

    def insert(self, rule: RuleSpec) -> None:
        raise NotImplementedError

    def delete(self, rule: RuleSpec) -> None:
        raise NotImplementedError


class IptablesRuleStore(RuleStore):
    """Rule store backed by the iptables and ip6tables commands."""

    def __init__(
        self,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        runner: Callable[..., subprocess.CompletedProcess] = run,
    ):
        self.timeout = timeout
        self.runner = runner

    def command(self, action: str, rule: RuleSpec) -> List[str]:
        """Build the iptables command for an action (-C, -A, -D)."""
        return [IPTABLES[rule.family], "-t", rule.table, action, rule.chain, *rule.match]

    def _call(self, action: str, rule: RuleSpec) -> subprocess.CompletedProcess:
        cmd = self.command(action, rule)
        try:
            return self.runner(cmd, check=False, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise RuleStoreError(f"Timed out after {self.timeout}s", cmd) from e
        except OSError as e:
            raise RuleStoreError(f"Cannot run {cmd[0]}: {e}", cmd) from e

    def exists(self, rule: RuleSpec) -> bool:
        result = self._call("-C", rule)
        if result.returncode == 0:
            return True
        if result.returncode == RULE_ABSENT:
            return False
        raise RuleStoreError("Rule check failed", self.command("-C", rule), result.stderr or "")

    def insert(self, rule: RuleSpec) -> None:
        result = self._call("-A", rule)
        if result.returncode != 0:
            raise RuleStoreError("Rule insert failed", self.command("-A", rule), result.stderr or "")

    def delete(self, rule: RuleSpec) -> None:
        result = self._call("-D", rule)
        if result.returncode != 0:
            raise RuleStoreError("Rule delete failed", self.command("-D", rule), result.stderr or "")


class DryRunRuleStore(IptablesRuleStore):
    """Checks against the live rules but never changes them."""

    dry_run = True

    def insert(self, rule: RuleSpec) -> None:
        logger.debug(f"    would run: {' '.join(self.command('-A', rule))}")

    def delete(self, rule: RuleSpec) -> None:
        logger.debug(f"    would run: {' '.join(self.command('-D', rule))}")

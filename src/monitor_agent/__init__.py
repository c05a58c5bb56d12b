"""Monitor Agent - turn enhancement requests into reviewed, merged pull requests."""

from importlib.metadata import PackageNotFoundError, version

from monitor_agent.schemas import CodeGenResult, EnhancementPlan, EnhancementStatus

__all__ = ["CodeGenResult", "EnhancementPlan", "EnhancementStatus"]

try:
    __version__ = version("monitor-agent")
except PackageNotFoundError:
    __version__ = "0.0.0"

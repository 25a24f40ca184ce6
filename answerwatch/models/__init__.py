from answerwatch.models.business import Business
from answerwatch.models.competitor import Competitor
from answerwatch.models.execution import Execution, ExecutionSource, ExecutionStatus
from answerwatch.models.platform import Platform
from answerwatch.models.prompt import Prompt, Topic
from answerwatch.models.usage import ApiCallLog, UsageRecord

__all__ = [
    "ApiCallLog",
    "Business",
    "Competitor",
    "Execution",
    "ExecutionSource",
    "ExecutionStatus",
    "Platform",
    "Prompt",
    "Topic",
    "UsageRecord",
]

from typing import Optional

from studyflow.utils import get_logger
from .models import UsageLog
from .study_store import StoreError

LOG = get_logger()


def record_usage(store, call, feature: str, owner_id: Optional[str] = None, job_id: Optional[str] = None, lecture_id: Optional[str] = None) -> Optional[UsageLog]:
    """Best-effort usage row for one gateway call; failures are logged, never raised."""
    if call is None:
        return None
    usage = getattr(call, 'usage', None)
    cost = getattr(call, 'cost', None)
    log = UsageLog(
        owner_id=owner_id,
        job_id=job_id,
        lecture_id=lecture_id,
        feature=feature,
        model=getattr(call, 'model', None),
        prompt_tokens=getattr(usage, 'prompt_tokens', None),
        completion_tokens=getattr(usage, 'completion_tokens', None),
        total_tokens=getattr(usage, 'total_tokens', None),
        input_cost_usd=getattr(cost, 'input_cost_usd', None),
        output_cost_usd=getattr(cost, 'output_cost_usd', None),
        cost_usd=getattr(cost, 'cost_usd', getattr(call, 'cost_usd', None)),
    )
    try:
        return store.insert_usage_log(log)
    except StoreError as e:
        LOG.warning('usage_log_failed', extra={'feature': feature, 'job_id': job_id, 'error': str(e)})
        return None

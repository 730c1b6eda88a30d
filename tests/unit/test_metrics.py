"""
Unit tests for metrics collection utilities.
"""

import pytest
from datetime import datetime
from unittest.mock import MagicMock, patch

from notifier.utils.metrics import JobMetrics, emit_metric, track_api_call


def test_job_metrics_initialization():
    """Test job metrics initialization."""
    metrics = JobMetrics(job_id="job_123", event="github.bot.notify")
    
    assert metrics.job_id == "job_123"
    assert metrics.event == "github.bot.notify"
    assert metrics.outcome == "running"
    assert metrics.comments == {"created": 0, "updated": 0, "unchanged": 0, "deleted": 0}
    assert metrics.api_calls == {}


def test_job_metrics_start():
    """Test starting metrics collection."""
    metrics = JobMetrics("job_123", "github.bot.notify")
    
    metrics.start()
    
    assert metrics.start_time is not None
    assert isinstance(metrics.start_time, datetime)
    assert metrics.outcome == "running"


def test_job_metrics_complete():
    """Test completing metrics collection."""
    metrics = JobMetrics("job_123", "github.bot.notify")
    
    metrics.start()
    metrics.complete(outcome="stopped")
    
    assert metrics.end_time is not None
    assert metrics.outcome == "stopped"
    assert metrics.duration_ms is not None
    assert metrics.duration_ms >= 0


def test_job_metrics_record_comment():
    """Test recording comment writes."""
    metrics = JobMetrics("job_123", "github.bot.notify")
    
    metrics.record_comment("created")
    metrics.record_comment("updated")
    metrics.record_comment("updated")
    
    assert metrics.comments["created"] == 1
    assert metrics.comments["updated"] == 2
    assert metrics.comments["unchanged"] == 0


def test_job_metrics_record_api_call():
    """Test recording API calls."""
    metrics = JobMetrics("job_123", "github.bot.notify")
    
    metrics.record_api_call("github", 100.0)
    metrics.record_api_call("github", 200.0)
    metrics.record_api_call("slack", 50.0)
    
    assert metrics.api_calls["github"] == 2
    assert metrics.api_calls["slack"] == 1
    assert metrics.api_latencies["github"] == [100.0, 200.0]


def test_job_metrics_get_summary():
    """Test getting metrics summary."""
    metrics = JobMetrics("job_123", "github.bot.notify")
    
    metrics.start()
    metrics.record_comment("created")
    metrics.record_api_call("github", 100.0)
    metrics.record_api_call("github", 300.0)
    metrics.complete()
    
    summary = metrics.get_summary()
    
    assert summary["job_id"] == "job_123"
    assert summary["event"] == "github.bot.notify"
    assert summary["outcome"] == "completed"
    assert summary["comments"]["created"] == 1
    assert summary["api_calls"]["github"] == 2
    assert summary["api_latencies"]["github"] == {
        "count": 2,
        "min_ms": 100.0,
        "max_ms": 300.0,
        "avg_ms": 200.0,
    }



def test_job_metrics_complete_logs_latencies():
    """Test the completion log line carries the latency summary."""
    metrics = JobMetrics("job_123", "github.bot.notify")
    metrics.start()
    metrics.record_api_call("github", 120.0)
    
    with patch("notifier.utils.metrics.logger") as logger:
        metrics.complete()
    
    extra = logger.info.call_args.kwargs["extra"]
    assert extra["outcome"] == "completed"
    assert extra["api_latencies"]["github"]["count"] == 1

@pytest.mark.asyncio
async def test_track_api_call_records_latency():
    """Test tracking an API call records it on the job metrics."""
    metrics = JobMetrics("job_123", "github.bot.notify")
    logger = MagicMock()
    
    async with track_api_call(metrics, "github", "GET", "/repos/acme/api/pulls", logger):
        pass
    
    assert metrics.api_calls["github"] == 1
    logger.info.assert_called_once()


@pytest.mark.asyncio
async def test_track_api_call_logs_failure():
    """Test tracking an API call that raises logs the error and re-raises."""
    metrics = JobMetrics("job_123", "github.bot.notify")
    logger = MagicMock()
    
    with pytest.raises(RuntimeError):
        async with track_api_call(metrics, "github", "GET", "/repos/acme/api/pulls", logger):
            raise RuntimeError("boom")
    
    assert metrics.api_calls["github"] == 1
    logger.error.assert_called_once()
    assert logger.error.call_args.kwargs["extra"]["error"] == "boom"


def test_emit_metric():
    """Test emitting a metric."""
    # Should not raise exception
    emit_metric("github.rate_limited", 1, repo="acme/api")
    emit_metric("slack.deploy", 1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

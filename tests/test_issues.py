from dbpulse.services.issues import (
    Severity,
    cache_hit_issue,
    check_effective_cache_size,
    check_max_connections,
    check_shared_buffers,
    check_work_mem,
    evaluate_configuration,
    unused_index_issue,
)

HARDWARE = {"cpu_cores": 2, "total_memory_mb": 16384, "postgres_version": "PostgreSQL 16", "os_type": "Linux"}


def test_low_shared_buffers_warns():
    # 16384 blocks of 8kB = 128MB, recommended min(4096, 8192) = 4096MB
    issues = check_shared_buffers("16384", HARDWARE)
    assert len(issues) == 1
    issue = issues[0].to_dict()
    assert issue == {
        "parameter": "shared_buffers",
        "current_value": "128MB",
        "recommended_value": "4096MB",
        "severity": "Warning",
        "reason": "shared_buffers is too low. Recommended: 25% of RAM (max 8GB)",
    }


def test_adequate_shared_buffers_is_quiet():
    assert check_shared_buffers(str(2048 * 128), HARDWARE) == []
    assert check_shared_buffers("not a number", HARDWARE) == []


def test_half_of_recommendation_rounds_down():
    # recommended 1025MB, so 512MB is enough
    assert check_shared_buffers(str(512 * 128), {**HARDWARE, "total_memory_mb": 4100}) == []
    assert len(check_shared_buffers(str(511 * 128), {**HARDWARE, "total_memory_mb": 4100})) == 1
    # recommended 1035MB, so 517MB is enough
    assert check_effective_cache_size(str(517 * 128), {**HARDWARE, "total_memory_mb": 1380}) == []


def test_effective_cache_size_is_info():
    (issue,) = check_effective_cache_size("16384", HARDWARE)
    assert issue.severity is Severity.INFO
    assert issue.recommended_value == "12288MB"


def test_work_mem_threshold():
    (issue,) = check_work_mem("2048", HARDWARE)
    assert issue.current_value == "2MB"
    assert issue.recommended_value == "10-50MB"
    assert check_work_mem("4096", HARDWARE) == []


def test_max_connections_against_cores():
    # recommended min(2 * 50, 200) = 100, warning above 200
    assert check_max_connections("200", HARDWARE) == []
    (issue,) = check_max_connections("201", HARDWARE)
    assert issue.recommended_value == "100"
    assert issue.severity is Severity.WARNING


def test_evaluate_configuration_only_checks_known_settings():
    settings = [
        {"name": "work_mem", "setting": "1024"},
        {"name": "max_connections", "setting": "100"},
        {"name": "random_page_cost", "setting": "4"},
    ]
    issues = evaluate_configuration(settings, HARDWARE)
    assert [issue.parameter for issue in issues] == ["work_mem"]


def test_cache_hit_ratio_rule():
    assert cache_hit_issue(None) is None
    assert cache_hit_issue(90.0) is None
    issue = cache_hit_issue(72.456)
    assert issue.severity is Severity.CRITICAL
    assert issue.description == "Cache hit ratio is 72.46%, should be > 90%"


def test_unused_index_issue():
    issue = unused_index_issue("public", "orders", "orders_status_idx").to_dict()
    assert issue["severity"] == "Info"
    assert issue["description"] == "Index orders_status_idx on public.orders is never used"
    assert issue["details"] == "Index: orders_status_idx"

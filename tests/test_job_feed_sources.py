# tests/test_job_feed_sources.py
import pytest

from modules.job_feed.lib.collectors.stub import StubCollector
from modules.job_feed.lib.config import SourceConfig
from modules.job_feed.lib.models import TimeWindow
from modules.job_feed.lib.sources import SourceRegistry


def linkedin():
    return SourceConfig(
        name="linkedin",
        kind="stub",
        tasks="keyword_location",
        time_filters={"day": "r86400", "week": "r604800"},
        max_per_task=10,
        job_limits={"python": 3},
        params={"keywords": ["python", "golang"], "locations": ["Remote", "Austin"]},
    )


def test_keyword_location_product():
    reg = SourceRegistry([linkedin()])
    tasks = reg.build_tasks("linkedin", TimeWindow.DAY)

    assert [t.label for t in tasks] == [
        "python in Remote",
        "python in Austin",
        "golang in Remote",
        "golang in Austin",
    ]
    assert all(t.window_value == "r86400" for t in tasks)
    assert tasks[0].query == {"keyword": "python", "location": "Remote"}
    assert [t.limit for t in tasks] == [3, 3, 10, 10]


def test_window_without_mapping_is_none():
    reg = SourceRegistry([linkedin()])
    src = reg.get("linkedin")
    assert reg.window_value(src, TimeWindow.WEEK) == "r604800"
    assert reg.window_value(src, TimeWindow.MONTH) is None
    assert reg.window_value(src, None) is None


def test_nationwide_when_no_locations():
    src = SourceConfig(name="dice", kind="stub", params={"keywords": ["python"]})
    tasks = SourceRegistry([src]).build_tasks("dice")
    assert [t.label for t in tasks] == ["python"]
    assert tasks[0].query["location"] == ""


def test_window_urls():
    src = SourceConfig(
        name="remote",
        kind="json_feed",
        tasks="window_urls",
        params={"urls": {"day": ["https://a.example/day"], "week": "https://a.example/week"}},
    )
    reg = SourceRegistry([src])
    assert [t.query["url"] for t in reg.build_tasks("remote", TimeWindow.DAY)] == ["https://a.example/day"]
    assert [t.query["url"] for t in reg.build_tasks("remote", TimeWindow.WEEK)] == ["https://a.example/week"]
    with pytest.raises(LookupError):
        reg.build_tasks("remote", TimeWindow.MONTH)


def test_repositories_members():
    src = SourceConfig(
        name="github",
        kind="stub",
        tasks="repositories",
        windowed=False,
        params={
            "repos": [
                {"name": "internships", "url": "https://example.invalid/a", "max_jobs": 7},
                {"name": "new-grad", "url": "https://example.invalid/b"},
                {"url": "nameless is skipped"},
            ]
        },
    )
    reg = SourceRegistry([src])
    tasks = reg.build_tasks("github", TimeWindow.DAY)
    assert [(t.member, t.limit) for t in tasks] == [("internships", 7), ("new-grad", 5)]
    assert tasks[0].query == {"url": "https://example.invalid/a"}
    assert tasks[0].window_value is None

    only = reg.build_tasks("github", member="NEW-GRAD")
    assert [t.label for t in only] == ["new-grad"]
    with pytest.raises(LookupError):
        reg.build_tasks("github", member="staff")


def test_lookup_and_partitions():
    repos = SourceConfig(name="github", kind="stub", tasks="repositories", windowed=False)
    reg = SourceRegistry([linkedin(), repos])

    assert reg.names() == ["linkedin", "github"]
    assert reg.get("LinkedIn").name == "linkedin"
    assert [s.name for s in reg.windowed()] == ["linkedin"]
    assert [s.name for s in reg.unwindowed()] == ["github"]
    with pytest.raises(KeyError):
        reg.get("monster")


def test_unknown_task_builder():
    src = SourceConfig(name="odd", kind="stub", tasks="carrier-pigeon")
    with pytest.raises(KeyError):
        SourceRegistry([src]).build_tasks("odd")


def test_duplicate_names_rejected():
    with pytest.raises(ValueError):
        SourceRegistry([linkedin(), linkedin()])


def test_collector_is_cached_and_gets_skip_network():
    reg = SourceRegistry([linkedin()], skip_network=True)
    c1 = reg.collector_for("linkedin")
    assert isinstance(c1, StubCollector)
    assert c1.skip_network is True
    assert reg.collector_for("linkedin") is c1
    reg.close()
    assert reg.collector_for("linkedin") is not c1

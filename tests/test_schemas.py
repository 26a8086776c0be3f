"""Tests for portpatch.schemas.job."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from portpatch.schemas.job import JobConfig, WorkflowResult, WorkflowState


def _job(**overrides) -> JobConfig:
    values = {"port_name": "st", "patch_file": Path("/tmp/st.diff")}
    values.update(overrides)
    return JobConfig(**values)


class TestJobConfig:
    def test_defaults(self):
        job = _job()
        assert job.port_dir == Path("/usr/ports/x11/st")
        assert job.strip_level == 1
        assert job.dry_run is False

    @pytest.mark.parametrize("name", ["st", "xf86-video-intel", "py311-foo.bar"])
    def test_accepts_bare_names(self, name):
        assert _job(port_name=name).port_name == name

    @pytest.mark.parametrize("name", ["", "st/", "x11/st", "..", ".", "st\\x"])
    def test_rejects_paths(self, name):
        with pytest.raises(ValidationError):
            _job(port_name=name)

    def test_frozen(self):
        job = _job()
        with pytest.raises(ValidationError):
            job.port_name = "dwm"


class TestWorkflowResult:
    def test_exit_code(self):
        assert WorkflowResult(port_name="st", success=True).exit_code == 0
        assert WorkflowResult(port_name="st").exit_code == 1

    def test_starts_in_start_state(self):
        result = WorkflowResult(port_name="st")
        assert result.state == WorkflowState.START
        assert result.steps == []
        assert result.restored is None

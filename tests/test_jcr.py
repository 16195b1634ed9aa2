import io

import pytest

from dedupcore.chunk import TEMPORARY_ID
from dedupcore.jcr import JobControlRecord, JobStatus, new_job


def test_new_job_on_directory_adds_slash(tmp_path):
    job = new_job(str(tmp_path))
    assert job.path == str(tmp_path) + "/"
    assert job.status is JobStatus.INIT
    assert job.id == TEMPORARY_ID
    assert job.new_id == TEMPORARY_ID


def test_new_job_keeps_existing_slash(tmp_path):
    job = new_job(str(tmp_path) + "/")
    assert job.path == str(tmp_path) + "/"


def test_new_job_on_file_keeps_path(tmp_path):
    f = tmp_path / "list.txt"
    f.write_text("a\n")
    job = new_job(str(f))
    assert job.path == str(f)


def test_new_job_missing_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        new_job(str(tmp_path / "missing"))


def test_new_job_counters_start_at_zero(tmp_path):
    job = new_job(str(tmp_path))
    assert job.data_size == 0
    assert job.chunk_num == 0
    assert job.read_time == 0.0
    assert job.bv is None


def test_write_result_lists_every_counter():
    job = JobControlRecord(path="/", read_container_num=7, recipe_hit=3)
    out = io.StringIO()
    job.write_result(out)
    lines = out.getvalue().splitlines()
    assert lines[0] == "sync_buffer_num: 0"
    assert "read_container: 7" in lines
    assert lines[-1] == "recipe_hit: 3"
    assert len(lines) == 12


def test_write_result_logic_falls_back_to_physical():
    job = JobControlRecord(physical_recipe_unique_container=5)
    out = io.StringIO()
    job.write_result(out)
    assert "logic_recipe_unique_container: 5" in out.getvalue().splitlines()
    assert job.logic_recipe_unique_container == 5


def test_write_result_keeps_logic_when_set():
    job = JobControlRecord(
        logic_recipe_unique_container=2, physical_recipe_unique_container=9
    )
    out = io.StringIO()
    job.write_result(out)
    text = out.getvalue()
    assert "logic_recipe_unique_container: 2\n" in text
    assert "physical_recipe_unique_container: 9\n" in text
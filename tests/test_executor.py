# tests/test_executor.py
import pytest

from repofleet.errors import RepositorySkipped
from repofleet.model import EventCode, EventLevel
from repofleet.tasks.definition import TaskDefinition
from repofleet.tasks.executor import TaskExecutor, TaskOutcome
from repofleet.tasks.planner import TaskPlanner

from conftest import FakeGitHub, make_environment, make_repository

BRANCH = "automation/add-license"


@pytest.fixture
def repo(tmp_path):
    (tmp_path / "widget").mkdir()
    return make_repository(str(tmp_path / "widget"))


def run_task(ctx, env, repo, **task):
    task.setdefault("name", "add-license")
    definition = TaskDefinition.model_validate(task)
    plan = TaskPlanner(env).plan(definition, repo)
    return TaskExecutor(ctx, env, repo).execute(plan)


def license_task(**overrides):
    task = {
        "files": [{"path": "LICENSE", "content": "MIT"}],
        "branch": {"push_remote": "origin"},
        "commit_message": "Add license",
    }
    task.update(overrides)
    return task


def test_applies_files_on_a_branch_and_restores(ctx, repo, tmp_path):
    env = make_environment([repo])

    outcome = run_task(ctx, env, repo, **license_task())

    assert outcome == TaskOutcome.APPLIED
    assert (tmp_path / "widget" / "LICENSE").read_text() == "MIT"
    manager = env.repositories
    assert manager.call_names() == ["checkout_branch", "stage", "commit", "push", "switch_branch"]
    assert manager.calls[0] == ("checkout_branch", repo.path, BRANCH, "main")
    assert manager.calls[2] == ("commit", repo.path, "Add license")
    assert manager.calls[3] == ("push", repo.path, "origin", BRANCH)
    assert manager.calls[4] == ("switch_branch", repo.path, "main")
    applied = env.sink.by_code(EventCode.TASK_APPLY)
    assert applied[-1].message == "task applied"
    assert applied[-1].details["branch"] == BRANCH
    assert env.shared.mutated_files(repo.path) == ["LICENSE"]


def test_opens_pull_request(ctx, repo):
    github = FakeGitHub()
    env = make_environment([repo], github=github)

    run_task(ctx, env, repo, **license_task(pull_request={"title": "Add license", "body": "MIT"}))

    path, request = github.pull_requests[0]
    assert path == repo.path
    assert (request.title, request.base, request.head) == ("Add license", "main", BRANCH)
    created = [e for e in env.sink.by_code(EventCode.TASK_APPLY) if e.message == "pull request created"]
    assert created[0].details["url"] == github.url


def test_dirty_worktree_skips_before_start(ctx, repo, tmp_path):
    env = make_environment([repo])
    env.repositories.repo(repo.path).status = [" M README.md"]

    outcome = run_task(ctx, env, repo, **license_task())

    assert outcome == TaskOutcome.SKIPPED_BEFORE_START
    assert not (tmp_path / "widget" / "LICENSE").exists()
    skip = env.sink.by_code(EventCode.TASK_SKIP)[0]
    assert (skip.level, skip.message) == (EventLevel.WARN, "repository dirty")
    assert env.repositories.calls == []


def test_dirty_worktree_allowed_when_not_ensuring_clean(ctx, repo):
    env = make_environment([repo])
    env.repositories.repo(repo.path).status = [" M README.md"]
    assert run_task(ctx, env, repo, **license_task(ensure_clean=False)) == TaskOutcome.APPLIED


def test_existing_branch_skips(ctx, repo):
    env = make_environment([repo])
    env.repositories.repo(repo.path).branches.append(BRANCH)

    assert run_task(ctx, env, repo, **license_task()) == TaskOutcome.SKIPPED_BEFORE_START
    assert env.sink.by_code(EventCode.TASK_SKIP)[0].message == "branch exists"


def test_missing_push_remote_stops_after_commit(ctx, repo, tmp_path):
    env = make_environment([repo])

    outcome = run_task(ctx, env, repo, **license_task(branch={"push_remote": ""}))

    assert outcome == TaskOutcome.SKIPPED
    assert (tmp_path / "widget" / "LICENSE").exists()
    assert env.repositories.call_names() == ["checkout_branch", "stage", "commit", "switch_branch"]
    message = env.sink.by_code(EventCode.TASK_SKIP)[0].message
    assert message == "push remote not configured (set task.branch.push_remote)"


def test_unknown_push_remote(ctx, repo):
    env = make_environment([repo])
    run_task(ctx, env, repo, **license_task(branch={"push_remote": "upstream"}))
    skip = env.sink.by_code(EventCode.TASK_SKIP)[0]
    assert skip.message == "remote missing"
    assert skip.details["remote"] == "upstream"


def test_missing_start_point_falls_back_to_current_head(ctx, repo):
    env = make_environment([repo])
    run_task(ctx, env, repo, **license_task(branch={"push_remote": "origin", "start_point": "release"}))
    assert env.repositories.calls[0] == ("checkout_branch", repo.path, BRANCH, "")
    assert env.sink.by_code(EventCode.TASK_SKIP)[0].message == "start point missing"


def test_dry_run_only_plans(ctx, repo, tmp_path):
    env = make_environment([repo], dry_run=True)

    assert run_task(ctx, env, repo, **license_task()) == TaskOutcome.PLANNED

    planned = env.sink.by_code(EventCode.TASK_PLAN)[0]
    assert planned.details["files"] == "LICENSE"
    assert planned.details["branch"] == BRANCH
    assert not (tmp_path / "widget" / "LICENSE").exists()
    assert env.repositories.calls == []


def test_plan_without_changes_is_reported(ctx, repo, tmp_path):
    (tmp_path / "widget" / "LICENSE").write_text("MIT")
    env = make_environment([repo])

    assert run_task(ctx, env, repo, **license_task()) == TaskOutcome.SKIPPED_BEFORE_START

    skip = env.sink.by_code(EventCode.TASK_SKIP)[0]
    assert (skip.level, skip.message) == (EventLevel.INFO, "task has no changes")


def test_custom_action_value_is_captured(ctx, repo):
    env = make_environment([repo])

    outcome = run_task(
        ctx, env, repo,
        actions=[{"type": "repo.release.tag", "options": {"tag": "v1.0.0"}, "capture": "release"}],
    )

    assert outcome == TaskOutcome.APPLIED
    assert env.variables.get("release") == "v1.0.0"
    assert env.repositories.call_names() == ["create_tag"]
    assert env.sink.by_code(EventCode.RELEASE_TAG)[0].message == "released v1.0.0"


def test_action_safeguards_soft_skip_by_default(ctx, repo):
    env = make_environment([repo])

    outcome = run_task(
        ctx, env, repo,
        actions=[{"type": "repo.release.tag", "options": {"tag": "v1", "safeguards": {"branch": "release"}}}],
    )

    assert outcome == TaskOutcome.SKIPPED_BEFORE_START
    skip = env.sink.by_code(EventCode.TASK_SKIP)[0]
    assert skip.message == "requires branch release"
    assert skip.details["action"] == "repo.release.tag"
    assert env.repositories.calls == []


def test_action_hard_stop_safeguard_skips_repository(ctx, repo):
    env = make_environment([repo])
    with pytest.raises(RepositorySkipped, match="requires branch release"):
        run_task(
            ctx, env, repo,
            actions=[{"type": "repo.release.tag", "options": {"tag": "v1", "safeguards": {"hard_stop": {"branch": "release"}}}}],
        )

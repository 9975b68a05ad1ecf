# repofleet_workflow.py
# Workflow for keeping a directory of GitHub checkouts tidy: canonical
# remotes over SSH, folders named after their repository, a shared license
# file, and an audit report at the end.
from __future__ import annotations
from repofleet.dsl import action, file, pull_request, step, task, wf

LICENSE_TEMPLATE = """MIT License

Copyright (c) {{ Environment.year | default("2026") }} {{ Repository.Owner }}
"""


def workflow():
    return wf(
        # Point origin at the canonical repository (follows renames/transfers)
        step("remote update-to-canonical", name="canonical"),

        # Normalize every remote to SSH
        step("remote update-protocol", name="ssh", from_="https", to="ssh"),

        # Folder name == repository name
        step("folder rename", name="rename", require_clean=True),

        # Add a license on a branch and open a pull request for it
        step(
            "tasks apply",
            name="license",
            tasks=[
                task(
                    "add-license",
                    file("LICENSE", LICENSE_TEMPLATE, mode="skip-if-exists"),
                    branch="chore/{{ Task.Name }}",
                    push_remote="origin",
                    commit_message="Add MIT license",
                    pull_request=pull_request("Add MIT license", "Adds the standard license file."),
                    safeguards={"soft_skip": {"branch_in": ["main", "master"]}},
                ),
            ],
        ),

        # One CSV for the whole run
        step(
            "tasks apply",
            name="audit",
            after=["rename"],
            tasks=[task("audit", actions=[action("audit.report", output="reports/audit.csv")])],
        ),
    )

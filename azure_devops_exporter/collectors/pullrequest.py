"""Active pull request metrics."""

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import (
    MetricsCollector,
    display_name,
    project_key,
    timestamp,
)
from azure_devops_exporter.metrics import MetricSnapshot


class PullRequestCollector(MetricsCollector):
    name = "PullRequest"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        snapshot = MetricSnapshot()
        info = snapshot.family(
            "pullrequest_info",
            "Active pull request",
            (
                "project_id",
                "repository_id",
                "pullrequest_id",
                "pullrequest_title",
                "status",
                "is_draft",
                "vote_status",
                "creator",
                "source_branch",
                "target_branch",
            ),
        )
        status = snapshot.family(
            "pullrequest_status",
            "Pull request timestamps",
            ("project_id", "repository_id", "pullrequest_id", "type"),
        )
        label = snapshot.family(
            "pullrequest_label",
            "Label attached to a pull request",
            ("project_id", "repository_id", "pullrequest_id", "label", "active"),
        )

        def fetch(project: dict) -> None:
            project_id = project.get("id")
            for repository in client.list_repositories(project_id):
                if repository.get("isDisabled"):
                    continue
                repository_id = repository.get("id")
                for pr in client.list_pull_requests(project_id, repository_id):
                    labels = {
                        "project_id": project_id,
                        "repository_id": repository_id,
                        "pullrequest_id": pr.get("pullRequestId"),
                    }
                    info.add(
                        1,
                        **labels,
                        pullrequest_title=pr.get("title"),
                        status=pr.get("status"),
                        is_draft=bool(pr.get("isDraft")),
                        vote_status=_vote_status(pr.get("reviewers") or []),
                        creator=display_name(pr.get("createdBy")),
                        source_branch=pr.get("sourceRefName"),
                        target_branch=pr.get("targetRefName"),
                    )
                    status.add(timestamp(pr.get("creationDate")), **labels, type="created")
                    for pr_label in pr.get("labels") or []:
                        label.add(
                            1,
                            **labels,
                            label=pr_label.get("name"),
                            active=bool(pr_label.get("active")),
                        )

        self.for_each(self.discovery.projects(), project_key, fetch, snapshot)
        return snapshot


def _vote_status(reviewers: list[dict]) -> str:
    """Summarise reviewer votes, the most negative vote wins."""
    votes = [r.get("vote", 0) for r in reviewers]
    if not votes:
        return "none"
    if min(votes) <= -10:
        return "rejected"
    if min(votes) <= -5:
        return "waiting_for_author"
    if max(votes) >= 10:
        return "approved"
    if max(votes) >= 5:
        return "approved_with_suggestions"
    return "no_vote"

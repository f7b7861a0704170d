"""Agent pool, agent and job request metrics."""

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import MetricsCollector, timestamp
from azure_devops_exporter.metrics import MetricSnapshot


class AgentPoolCollector(MetricsCollector):
    name = "AgentPool"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        snapshot = MetricSnapshot()
        pool_info = snapshot.family(
            "agentpool_info",
            "Agent pool",
            ("agent_pool_id", "agent_pool_name", "agent_pool_type", "is_hosted"),
        )
        pool_size = snapshot.family(
            "agentpool_size", "Number of agents in the pool", ("agent_pool_id",)
        )
        pool_usage = snapshot.family(
            "agentpool_usage",
            "Ratio of agents currently running a job",
            ("agent_pool_id",),
        )
        queue_length = snapshot.family(
            "agentpool_queue_length",
            "Number of job requests waiting for an agent",
            ("agent_pool_id",),
        )
        agent_info = snapshot.family(
            "agentpool_agent_info",
            "Agent of an agent pool",
            (
                "agent_pool_id",
                "agent_pool_agent_id",
                "agent_pool_agent_name",
                "agent_pool_agent_version",
                "provisioning_state",
                "max_parallelism",
                "agent_pool_agent_os",
                "enabled",
            ),
        )
        agent_status = snapshot.family(
            "agentpool_agent_status",
            "Agent status (online flag and creation time)",
            ("agent_pool_agent_id", "type"),
        )
        agent_job = snapshot.family(
            "agentpool_agent_job",
            "Job currently assigned to an agent, value is the assign time",
            (
                "agent_pool_agent_id",
                "job_request_id",
                "definition_id",
                "definition_name",
                "plan_type",
                "scope_id",
            ),
        )

        def fetch(pool: dict) -> None:
            pool_id = pool.get("id")
            agents = client.list_agent_pool_agents(pool_id)
            jobs = client.list_agent_pool_jobs(pool_id)

            pool_info.add(
                1,
                agent_pool_id=pool_id,
                agent_pool_name=pool.get("name"),
                agent_pool_type=pool.get("poolType"),
                is_hosted=bool(pool.get("isHosted")),
            )
            pool_size.add(len(agents), agent_pool_id=pool_id)

            busy = 0
            for agent in agents:
                agent_id = agent.get("id")
                agent_info.add(
                    1,
                    agent_pool_id=pool_id,
                    agent_pool_agent_id=agent_id,
                    agent_pool_agent_name=agent.get("name"),
                    agent_pool_agent_version=agent.get("version"),
                    provisioning_state=agent.get("provisioningState"),
                    max_parallelism=agent.get("maxParallelism"),
                    agent_pool_agent_os=agent.get("osDescription"),
                    enabled=bool(agent.get("enabled")),
                )
                agent_status.add(
                    agent.get("status") == "online",
                    agent_pool_agent_id=agent_id,
                    type="status",
                )
                agent_status.add(
                    timestamp(agent.get("createdOn")),
                    agent_pool_agent_id=agent_id,
                    type="created",
                )

                request = agent.get("assignedRequest")
                if request:
                    busy += 1
                    definition = request.get("definition") or {}
                    agent_job.add(
                        timestamp(request.get("assignTime")),
                        agent_pool_agent_id=agent_id,
                        job_request_id=request.get("requestId"),
                        definition_id=definition.get("id"),
                        definition_name=definition.get("name"),
                        plan_type=request.get("planType"),
                        scope_id=request.get("scopeId"),
                    )

            pool_usage.add(busy / len(agents) if agents else 0, agent_pool_id=pool_id)
            waiting = [
                job
                for job in jobs
                if not job.get("assignTime") and not job.get("finishTime")
            ]
            queue_length.add(len(waiting), agent_pool_id=pool_id)

        self.for_each(
            self.discovery.agent_pools(),
            lambda pool: pool.get("name") or str(pool.get("id")),
            fetch,
            snapshot,
        )
        return snapshot

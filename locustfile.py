"""
Minimal Locust load test for the stockcache API.

Run: locust -f locustfile.py --host=http://localhost:3000
Then open http://localhost:8089 and start a swarm.
"""

from locust import HttpUser, between, task


class CacheStatsUser(HttpUser):
    wait_time = between(0.5, 1.5)

    @task(3)
    def stats(self):
        self.client.get("/api/cache/stats", name="/api/cache/stats")

    @task(1)
    def health(self):
        self.client.get("/health", name="/health")

"""
Locust Load Test Suite

Start the API with the in-memory booking registry accepting "<owner>:<ref>" ids:
  DEV_AUTOREGISTER_BOOKINGS=true uvicorn swap_engine.main:app

Run scenarios:
  locust -f locustfile.py --tags race        # Competing accepts on one listing
  locust -f locustfile.py --tags throughput  # Cached browse
  locust -f locustfile.py --tags edge        # Bad input
  locust -f locustfile.py                    # All tests
"""

import random
import uuid
from datetime import datetime, timedelta, timezone

from locust import HttpUser, between, events, tag, task

# Shared state
LISTING_IDS = []
RACE = {"target_id": None, "owner_id": None, "proposal_ids": []}


def random_user_id():
    return random.randint(1000, 999999)


def headers_for(user_id):
    return {"X-User-ID": str(user_id)}


def create_listing(client, user_id, mode="exclusive", deadline=None):
    body = {"booking_id": f"{user_id}:{uuid.uuid4().hex[:12]}", "mode": mode, "title": f"Listing of {user_id}"}
    if deadline:
        body["auction_deadline"] = deadline
    resp = client.post("/api/v1/listings/", json=body, headers=headers_for(user_id), name="/api/v1/listings/ [create]")
    if resp.status_code == 201:
        return resp.json()["id"]
    return None


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: race target is created by the first RaceUser")
    print("=" * 60)


class RaceUser(HttpUser):
    """
    TEST 1: Commit race - many proposals, several concurrent accepts

    Run: locust -f locustfile.py --tags race -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM targeting_edges
      WHERE status = 'accepted' AND target_listing_id = X;
    Should be exactly 1
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.user_id = random_user_id()
        if RACE["target_id"] is None:
            future = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
            RACE["owner_id"] = self.user_id
            RACE["target_id"] = create_listing(self.client, self.user_id, mode="auction", deadline=future)
            print(f"\n✓ Created auction listing {RACE['target_id']}\n")
            return

        source_id = create_listing(self.client, self.user_id)
        if source_id is None or RACE["target_id"] is None:
            return
        resp = self.client.post(
            f"/api/v1/listings/{source_id}/target",
            json={"target_listing_id": RACE["target_id"], "message": "load test bid"},
            headers=headers_for(self.user_id),
            name="/api/v1/listings/{id}/target",
        )
        if resp.status_code == 201:
            RACE["proposal_ids"].append(resp.json()["id"])

    @tag("race")
    @task
    def accept_any_bid(self):
        """The target owner accepts bids from many connections at once; one wins."""
        if not RACE["proposal_ids"] or RACE["owner_id"] is None:
            return

        edge_id = random.choice(RACE["proposal_ids"])
        with self.client.post(
            f"/api/v1/proposals/{edge_id}/accept",
            headers=headers_for(RACE["owner_id"]),
            name="/api/v1/proposals/{id}/accept",
            catch_response=True,
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: ALREADY_RESOLVED or CONCURRENCY_CONFLICT
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare avg response time, requests/sec, P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def browse_cached(self):
        page = random.randint(1, 5)
        resp = self.client.get(f"/api/v1/listings/?page={page}&page_size=20", name="/api/v1/listings/ [cached]")
        if resp.status_code == 200:
            for listing in resp.json().get("listings", []):
                if listing["id"] not in LISTING_IDS:
                    LISTING_IDS.append(listing["id"])

    @tag("throughput", "read")
    @task(3)
    def proposals_of_listing(self):
        if LISTING_IDS:
            self.client.get(
                f"/api/v1/listings/{random.choice(LISTING_IDS)}/proposals",
                name="/api/v1/listings/{id}/proposals",
            )

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.user_id = random_user_id()
        self.listing_id = create_listing(self.client, self.user_id)

    @tag("edge")
    @task
    def self_target(self):
        if not self.listing_id:
            return
        with self.client.post(
            f"/api/v1/listings/{self.listing_id}/target",
            json={"target_listing_id": self.listing_id},
            headers=headers_for(self.user_id),
            name="/api/v1/listings/{id}/target [self]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 422 and resp.json().get("code") == "SELF_TARGETING":
                resp.success()
            else:
                resp.failure(f"Expected 422 SELF_TARGETING, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_target(self):
        if not self.listing_id:
            return
        with self.client.post(
            f"/api/v1/listings/{self.listing_id}/target",
            json={"target_listing_id": 99999999},
            headers=headers_for(self.user_id),
            name="/api/v1/listings/{id}/target [unknown]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 409:
                resp.success()
            else:
                resp.failure(f"Expected 409, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/listings/",
            data="not json at all",
            headers=headers_for(self.user_id),
            catch_response=True,
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_identity(self):
        with self.client.post(
            "/api/v1/proposals/1/accept",
            catch_response=True,
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

      - Mostly browsing
      - Some proposals and retargets
      - Rare new listings
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.user_id = random_user_id()
        self.listing_id = create_listing(self.client, self.user_id)
        if self.listing_id:
            LISTING_IDS.append(self.listing_id)

    @task(50)
    def browse(self):
        self.client.get("/api/v1/listings/?page=1&page_size=20")

    @task(10)
    def can_target(self):
        if self.listing_id and LISTING_IDS:
            self.client.get(
                f"/api/v1/listings/{self.listing_id}/can-target/{random.choice(LISTING_IDS)}",
                headers=headers_for(self.user_id),
                name="/api/v1/listings/{id}/can-target/{target}",
            )

    @task(5)
    def retarget(self):
        if self.listing_id and LISTING_IDS:
            self.client.put(
                f"/api/v1/listings/{self.listing_id}/target",
                json={"target_listing_id": random.choice(LISTING_IDS)},
                headers=headers_for(self.user_id),
                name="/api/v1/listings/{id}/target [retarget]",
            )

    @task(1)
    def new_listing(self):
        listing_id = create_listing(self.client, self.user_id)
        if listing_id:
            LISTING_IDS.append(listing_id)

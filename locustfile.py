"""Load profile: mostly order listing and detail reads, some order creation.

Expects a seeded database with products P001..P010 and the sign-in below.
"""
import os
import random

from locust import HttpUser, task, between

EMAIL = os.getenv("LOCUST_EMAIL", "load@example.com")
PASSWORD = os.getenv("LOCUST_PASSWORD", "loadtest")


class SalesUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.headers = {}
        self.order_ids = []
        r = self.client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        if r.status_code == 200:
            self.headers = {"Authorization": f"Bearer {r.json()['access_token']}"}

    @task(1)
    def create_order(self):
        if not self.headers:
            return
        items = [
            {"product_id": f"P{n:03d}", "quantity": random.randint(1, 5)}
            for n in random.sample(range(1, 11), k=random.randint(1, 3))
        ]
        r = self.client.post(
            "/orders",
            json={"date": "2024-01-01", "line_items": items},
            headers=self.headers,
        )
        if r.status_code == 201:
            self.order_ids.append(r.json()["id"])

    @task(3)
    def list_orders(self):
        self.client.get("/orders", params={"q": random.choice(["", "TR", "C"])}, headers=self.headers)

    @task(3)
    def order_detail(self):
        if self.order_ids:
            self.client.get(f"/orders/{random.choice(self.order_ids)}", name="/orders/[id]", headers=self.headers)

from locust import HttpUser, task, between
import random

class ShopperUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Load the catalog once for this simulated shopper
        r = self.client.get("/api/products")
        self.products = r.json() if r.status_code == 200 else []

    @task(5)
    def browse(self):
        self.client.get("/api/products")
        if self.products:
            product = random.choice(self.products)
            self.client.get(f"/api/products/{product['id']}", name="/api/products/[id]")

    @task(2)
    def checkout(self):
        if not self.products:
            return
        product = random.choice(self.products)
        quantity = random.randint(1, 3)
        uname = f"shopper{random.randint(1, 1_000_000)}"
        self.client.post("/api/orders", json={
            "customerName": uname,
            "customerEmail": f"{uname}@example.com",
            "customerPhone": "+8801700000000",
            "items": [{
                "productId": product["id"],
                "productName": product["name"],
                "productImage": product["image"],
                "price": product["price"],
                "quantity": quantity,
            }],
            "total": product["price"] * quantity,
        })

    @task(1)
    def list_orders(self):
        self.client.get("/api/orders", params={"page": 1, "limit": 10})

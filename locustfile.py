from locust import HttpUser, task, between
import random
import time
from datetime import datetime, timezone


# Devices must exist (or GPS_REGISTER_UNKNOWN_DEVICES=true) for reports to be accepted
DEVICE_IDS = [f"load-{n:04d}" for n in range(1, 51)]


def jitter(value, spread=0.01):
    return round(value + random.uniform(-spread, spread), 6)


class OsmAndTracker(HttpUser):
    """Phone app reporting flat key/value pairs in the query string"""
    wait_time = between(1, 3)

    def on_start(self):
        self.device_id = random.choice(DEVICE_IDS)
        self.latitude = 52.52
        self.longitude = 13.405

    @task(5)
    def report_position(self):
        """Send a position report"""
        self.latitude = jitter(self.latitude)
        self.longitude = jitter(self.longitude)
        self.client.get("/", params={
            "id": self.device_id,
            "timestamp": int(time.time()),
            "lat": self.latitude,
            "lon": self.longitude,
            "speed": round(random.uniform(0, 60), 1),
            "bearing": random.randint(0, 359),
            "altitude": random.randint(20, 60),
            "batt": random.randint(10, 100),
        }, name="/ [query]")

    @task(1)
    def report_network_only(self):
        """Report without a fix, only radio observations"""
        self.client.post("/", data={
            "id": self.device_id,
            "cell": "262,1,4321,8765,-70",
            "wifi": "aa-bb-cc-dd-ee-ff,-60",
        }, name="/ [form]")


class BackgroundGeolocationTracker(HttpUser):
    """Background geolocation SDK posting nested JSON documents"""
    wait_time = between(0.5, 2)

    def on_start(self):
        self.device_id = random.choice(DEVICE_IDS)

    @task
    def report_location(self):
        """Send a JSON location report"""
        self.client.post("/", json={
            "device_id": self.device_id,
            "location": {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "coords": {
                    "latitude": jitter(48.8566, 0.05),
                    "longitude": jitter(2.3522, 0.05),
                    "speed": round(random.uniform(-1, 20), 2),
                    "heading": random.randint(-1, 359),
                    "accuracy": random.randint(3, 30),
                    "altitude": random.randint(20, 60),
                },
                "is_moving": random.choice([True, False]),
                "battery": {"level": round(random.random(), 2), "is_charging": False},
            },
        }, name="/ [json]")


# Performance test configuration
# Run with: locust -f locustfile.py --host=http://127.0.0.1:5055
# Or for headless: locust -f locustfile.py --host=http://127.0.0.1:5055 --headless -u 100 -r 10 --run-time 1m

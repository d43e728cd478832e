import json
import time
import subprocess
import uuid
import httpx
import sys
import os
import signal

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from backend.app.core.config import settings
from backend.app.core.jwt import token_for_user
from backend.app.core.security import sign_payload

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"


def signed_post(path, payload, secret):
    body = json.dumps(payload).encode("utf-8")
    return httpx.post(
        f"{BASE_URL}{API_PREFIX}{path}",
        content=body,
        headers={"X-Webhook-Signature": sign_payload(body, secret), "Content-Type": "application/json"},
    )


def start_server(echo=False):
    env = {**os.environ, "DB_ECHO": "True"} if echo else None
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env,
    )


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def run_verification():
    run_id = uuid.uuid4().hex[:8]
    payment = {
        "payment_id": f"pi_persist_{run_id}",
        "payment_provider": "stripe",
        "amount_paid": "4.99",
        "currency": "EUR",
        "credits_granted": 50,
        "description": "Pack 50 credits",
    }

    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server(echo=True)

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 2. Provision a user through the identity webhook
        print("\n--- [Step 2] Provisioning User ---")
        resp = signed_post("/webhooks/users", {
            "event": "user.created",
            "external_id": f"persist|{run_id}",
            "email": f"persist_{run_id}@test.com",
            "username": f"persist_{run_id}",
            "email_verified": True,
        }, settings.identity_webhook_secret)
        if resp.status_code != 200:
            raise Exception(f"Provisioning failed: {resp.status_code} {resp.text}")
        user_id = resp.json()["user_id"]
        payment["user_id"] = user_id
        print(f"✅ User {user_id} provisioned")

        # 3. Complete a purchase
        print("\n--- [Step 3] Completing Purchase ---")
        resp = signed_post("/webhooks/payments", payment, settings.payment_webhook_secret)
        if resp.status_code != 200:
            raise Exception(f"Purchase failed: {resp.status_code} {resp.text}")
        purchase = resp.json()
        print(f"✅ Purchase credited, invoice {purchase['invoice_number']}, balance {purchase['balance']}")

    finally:
        print("\n--- [Step 4] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)  # Wait for port release

    # 4. Restart Server
    print("\n--- [Step 5] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        # 5. Redeliver the same payment: must be recognised, not re-credited
        print("\n--- [Step 6] Redelivering Payment (Post-Restart) ---")
        resp = signed_post("/webhooks/payments", payment, settings.payment_webhook_secret)
        replay = resp.json()
        if not replay.get("duplicate") or replay.get("invoice_number") != purchase["invoice_number"]:
            raise Exception(f"Redelivery was not deduplicated: {replay}")
        print("✅ Redelivery deduplicated (payment persisted)")

        # 6. Balance survives restart
        print("\n--- [Step 7] Verifying Balance ---")
        token = token_for_user(user_id, f"persist_{run_id}", "USER", email_verified=True)
        resp = httpx.get(
            f"{BASE_URL}{API_PREFIX}/credits/balance", headers={"Authorization": f"Bearer {token}"}
        )
        if resp.status_code == 200 and resp.json()["balance"] == purchase["balance"]:
            print(f"✅ Balance persisted: {resp.json()['balance']}")
        else:
            raise Exception(f"Balance check failed: {resp.status_code} {resp.text}")

    finally:
        print("\n--- [Step 8] Stopping Server ---")
        stop_server(proc2)


if __name__ == "__main__":
    run_verification()

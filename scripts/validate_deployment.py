"""
Pre-Deploy and Smoke Test Script.

Runs the application in-process against the configured database and
executes a full smoke test:
1. Health Check
2. User provisioning via the identity webhook
3. Purchase webhook -> Balance -> Invoice download
4. Redelivery of the same payment is deduplicated
"""

import json
import sys
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fastapi.testclient import TestClient
from backend.app.main import app
from backend.app.core.config import settings
from backend.app.core.jwt import token_for_user
from backend.app.core.security import sign_payload


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def signed_post(client, path, payload, secret):
    body = json.dumps(payload).encode("utf-8")
    return client.post(
        path,
        content=body,
        headers={"X-Webhook-Signature": sign_payload(body, secret), "Content-Type": "application/json"},
    )


def main():
    print("🚀 Starting Deployment Validation...")
    run_id = uuid.uuid4().hex[:8]

    with TestClient(app) as client:
        # 1. Health Check
        print_step("PRE-DEPLOY", "Checking /health...")
        response = client.get("/health")
        if response.status_code != 200:
            fail(f"Health check failed: {response.status_code}")
        success(f"Health: {response.json()}")

        # 2. Provision a smoke user
        print_step("PROVISION", "Creating smoke user via identity webhook...")
        res = signed_post(client, "/v1/webhooks/users", {
            "event": "user.created",
            "external_id": f"smoke|{run_id}",
            "email": f"smoke_{run_id}@test.com",
            "username": f"smoke_{run_id}",
            "email_verified": True,
        }, settings.identity_webhook_secret)
        if res.status_code != 200:
            fail(f"Provisioning failed: {res.status_code} {res.text}")
        user_id = res.json()["user_id"]
        success(f"User {user_id} provisioned")

        token = token_for_user(user_id, f"smoke_{run_id}", "USER", email_verified=True)
        headers = {"Authorization": f"Bearer {token}"}

        # 3. Purchase -> Balance -> Invoice
        print_step("SMOKE", "Running Purchase -> Balance -> Invoice flow...")
        payment = {
            "payment_id": f"pi_smoke_{run_id}",
            "payment_provider": "stripe",
            "amount_paid": "4.99",
            "currency": "EUR",
            "user_id": user_id,
            "credits_granted": 50,
        }
        res = signed_post(client, "/v1/webhooks/payments", payment, settings.payment_webhook_secret)
        if res.status_code != 200:
            fail(f"Purchase webhook failed: {res.status_code} {res.text}")
        purchase = res.json()
        success(f"Invoice {purchase['invoice_number']} issued")

        res = client.get("/v1/credits/balance", headers=headers)
        if res.status_code != 200 or res.json()["balance"] != purchase["balance"]:
            fail(f"Balance mismatch: {res.status_code} {res.text}")
        success(f"Balance: {res.json()['balance']}")

        res = client.get(f"/v1/credits/transactions/{purchase['transaction_id']}/invoice", headers=headers)
        if res.status_code != 200 or purchase["invoice_number"] not in res.text:
            fail(f"Invoice download failed: {res.status_code}")
        success("Invoice rendered")

        # 4. Idempotency
        print_step("VERIFY", "Redelivering payment...")
        res = signed_post(client, "/v1/webhooks/payments", payment, settings.payment_webhook_secret)
        if not res.json().get("duplicate"):
            fail(f"Redelivery credited twice: {res.text}")
        success("Redelivery deduplicated")

    success("Deployment Validation Passed!")


if __name__ == "__main__":
    main()

import time
import subprocess
import httpx
import sys
import os
import signal
import uuid

from backend.app.core.jwt import create_access_token

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"

SERVER_CMD = [sys.executable, "-m", "uvicorn", "backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"]
SERVER_ENV = {**os.environ, "STORE_BACKEND": "database"}


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
    user_id = f"persist-{uuid.uuid4().hex[:8]}"
    service_token = create_access_token({"sub": "persistence-check", "user_id": "persistence-check", "role": "SERVICE"})
    user_token = create_access_token({"sub": user_id, "user_id": user_id, "role": "USER"})

    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = subprocess.Popen(
        SERVER_CMD,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env={**SERVER_ENV, "DB_ECHO": "True"}  # Enable echo to see SQL
    )

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 2. Dispatch a notification
        print("\n--- [Step 2] Dispatching Notification (Persistence Test) ---")
        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/internal/notifications/dispatch",
            json={"user_id": user_id, "type": "system", "title": "Persistence check", "message": "Still here?"},
            headers={"Authorization": f"Bearer {service_token}"},
        )
        if resp.status_code != 201:
            print(f"❌ Dispatch Failed: {resp.status_code} {resp.text}")
            raise Exception("Dispatch failed")
        notification_id = resp.json()["id"]
        print(f"✅ Notification {notification_id} stored")

    finally:
        print("\n--- [Step 3] Stopping Server ---")
        proc.send_signal(signal.SIGTERM)
        proc.wait()

    time.sleep(2)  # Wait for port release

    # 3. Restart Server
    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = subprocess.Popen(SERVER_CMD, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=SERVER_ENV)

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        # 4. List after restart
        print("\n--- [Step 5] Listing Notifications (Post-Restart) ---")
        resp = httpx.get(
            f"{BASE_URL}{API_PREFIX}/notifications",
            headers={"Authorization": f"Bearer {user_token}"},
        )
        ids = [n["id"] for n in resp.json()] if resp.status_code == 200 else []
        if notification_id in ids:
            print("✅ Notification Persisted!")
        else:
            print(f"❌ Notification missing after restart: {resp.status_code} {resp.text}")
            raise Exception("Notification lost after restart")

        # 5. Unread badge
        resp = httpx.get(
            f"{BASE_URL}{API_PREFIX}/notifications/unread-count",
            headers={"Authorization": f"Bearer {user_token}"},
        )
        print(f"✅ Unread count: {resp.json()}")

    finally:
        print("\n--- [Step 6] Stopping Server ---")
        proc2.send_signal(signal.SIGTERM)
        proc2.wait()


if __name__ == "__main__":
    run_verification()

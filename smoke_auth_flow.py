import getpass
import os

import requests

BASE_URL = os.environ.get("UBAA_URL", "http://localhost:8000").rstrip("/")

# Needs a running backend and a real campus account
username = os.environ.get("UBAA_USERNAME") or input("Username: ")
password = os.environ.get("UBAA_PASSWORD") or getpass.getpass("Password: ")
login_data = {"username": username, "password": password}

# 1. Login
print(f"\n--- 1. Logging in as '{username}' ---")
response = requests.post(f"{BASE_URL}/api/v1/auth/login", json=login_data, timeout=60)
if response.status_code != 200:
    print(f"Login failed: {response.status_code} {response.text}")
    exit(1)
token_1 = response.json()["token"]
print(f"Logged in as {response.json()['user']['name']}. Token 1: {token_1[:20]}...")

# 2. Second login should reuse the live upstream session
print("\n--- 2. Testing Session Reuse ---")
response = requests.post(f"{BASE_URL}/api/v1/auth/login", json=login_data, timeout=60)
token_2 = response.json()["token"]
print(f"Token 2: {token_2[:20]}...")

headers_1 = {"Authorization": f"Bearer {token_1}"}
headers_2 = {"Authorization": f"Bearer {token_2}"}
if requests.get(f"{BASE_URL}/api/v1/auth/status", headers=headers_1, timeout=15).status_code == 200:
    print("SUCCESS: Both tokens resolve to the same session.")
else:
    print("FAILURE: First token no longer resolves.")

# 3. User center profile through the session
print("\n--- 3. Fetching User Info ---")
response = requests.get(f"{BASE_URL}/api/v1/user/info", headers=headers_2, timeout=15)
print(f"{response.status_code}: {response.text}")

# 4. Logout ends the session for every token
print("\n--- 4. Logging out ---")
response = requests.post(f"{BASE_URL}/api/v1/auth/logout", headers=headers_2, timeout=15)
print(f"Logout: {response.status_code}")
response = requests.get(f"{BASE_URL}/api/v1/auth/status", headers=headers_1, timeout=15)
if response.status_code == 401:
    print("SUCCESS: Token 1 rejected after logout.")
else:
    print(f"FAILURE: Token 1 still accepted ({response.status_code}).")

print("\n--- Test Complete ---")

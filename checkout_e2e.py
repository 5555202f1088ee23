#!/usr/bin/env python3
"""
Checkout E2E smoke tests against a running service.

Run:
  python checkout_e2e.py

Optional env:
  CHECKOUT_BASE=http://localhost:8000
  ADMIN_TOKEN=change-me
  E2E_USER=e2e-student
  PAYMENT_ATTEMPTS=5
  DEBUG=1
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests


# =========================
# Simple CLI UI (ANSI)
# =========================

class Style:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"

    BOX_LINE = "─"
    BOX_VERT = "│"
    BOX_TL = "┌"
    BOX_TR = "┐"
    BOX_BL = "└"
    BOX_BR = "┘"


def boxed(text: str, color: str, bold_title: bool = True):
    line = Style.BOX_LINE * (len(text) + 2)
    print(f"{color}{Style.BOX_TL}{line}{Style.BOX_TR}{Style.RESET}")
    title = f"{Style.BOLD}{text}{Style.RESET}" if bold_title else text
    print(f"{color}{Style.BOX_VERT} {Style.RESET}{title}{color} {Style.BOX_VERT}{Style.RESET}")
    print(f"{color}{Style.BOX_BL}{line}{Style.BOX_BR}{Style.RESET}")


def banner():
    print()
    boxed("Cafeteria Checkout - E2E Smoke Tests", Style.CYAN)
    print()


def section_title(text: str):
    print()
    boxed(text, Style.BLUE)


def info(msg: str):
    print(f"{Style.CYAN}ℹ {msg}{Style.RESET}")


def warn(msg: str):
    print(f"{Style.YELLOW}⚠ {msg}{Style.RESET}")


def ok(msg: str):
    print(f"{Style.GREEN}✔ {msg}{Style.RESET}")


def fail(msg: str):
    print(f"{Style.RED}✘ {msg}{Style.RESET}")


# =========================
# Config
# =========================

CHECKOUT_BASE = os.getenv("CHECKOUT_BASE", "http://localhost:8000")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "change-me")
E2E_USER = os.getenv("E2E_USER", "e2e-student")
PAYMENT_ATTEMPTS = int(os.getenv("PAYMENT_ATTEMPTS", "5"))
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}

USER_HEADERS = {"X-User-Id": E2E_USER}
ADMIN_HEADERS = {"X-Admin-Token": ADMIN_TOKEN}

# Test data
CART = [
    {"productId": "p-latte", "name": "Latte", "price": "200", "quantity": 1, "category": "Coffee"},
    {"productId": "p-muffin", "name": "Blueberry Muffin", "price": "120", "quantity": 2, "category": "Bakery"},
]
ADDRESS = "Block C, Room 12"
PHONE = "9876543210"
CARD_DETAILS = {
    "cardNumber": "4242 4242 4242 4242",
    "expiryDate": "12/35",
    "cvv": "123",
    "cardholderName": "E2E Student",
}

LIFECYCLE = ["preparing", "out_for_delivery", "delivered"]


def debug(msg: str):
    if DEBUG:
        print(f"{Style.GRAY}… {msg}{Style.RESET}")


# =========================
# Models
# =========================

@dataclass
class TestResult:
    name: str
    success: bool
    details: str = ""
    scenario: str = ""


class ScenarioFailure(Exception):
    pass


# =========================
# HTTP helpers
# =========================

def http(method: str, path: str, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", 15)
    url = CHECKOUT_BASE + path
    debug(f"{method} {url} json={kwargs.get('json')}")
    return requests.request(method, url, **kwargs)


def wait_for_health(timeout: int = 30) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        try:
            resp = http("GET", "/health")
            if resp.status_code == 200:
                ok("checkout service is healthy.")
                return True
        except requests.RequestException as e:
            debug(f"checkout service not ready: {e}")
        time.sleep(1)
    fail(f"checkout service did not become healthy in {timeout} seconds.")
    return False


def expect(resp: requests.Response, expected: int, ctx: str) -> Dict[str, Any]:
    if resp.status_code != expected:
        raise ScenarioFailure(f"{ctx}: expected HTTP {expected}, got {resp.status_code}, body={resp.text}")
    return resp.json()


def step(name: str, scenario: str, fn) -> TestResult:
    """Run one check and turn its outcome into a TestResult."""
    try:
        details = fn() or ""
    except (ScenarioFailure, requests.RequestException, KeyError) as e:
        fail(f"{name}: {e}")
        return TestResult(name, False, str(e), scenario)
    ok(f"{name} {details}".strip())
    return TestResult(name, True, details, scenario)


# =========================
# API calls
# =========================

def get_order(order_id: str) -> Dict[str, Any]:
    return expect(http("GET", f"/orders/{order_id}", headers=USER_HEADERS), 200, f"GET order {order_id}")["order"]


def draft_order(method: str) -> Dict[str, Any]:
    body = {"items": CART, "address": ADDRESS, "phone": PHONE, "paymentMethod": method}
    return expect(http("POST", "/orders", json=body, headers=USER_HEADERS), 200, "POST /orders")


def pay_with_retries(draft: Dict[str, Any]) -> Dict[str, Any]:
    """The demo gateway declines about one payment in ten, so retry a few times."""
    body = {
        "paymentMethodId": "pm_demo_card",
        "amount": draft["total"],
        "orderData": draft,
        "paymentDetails": CARD_DETAILS,
        "idempotencyKey": f"e2e-{uuid.uuid4()}",
    }
    for attempt in range(1, PAYMENT_ATTEMPTS + 1):
        resp = http("POST", "/process-payment", json=body, headers=USER_HEADERS)
        if resp.status_code == 402:
            warn(f"Payment declined (attempt {attempt}/{PAYMENT_ATTEMPTS}), retrying")
            continue
        return expect(resp, 200, "POST /process-payment")
    raise ScenarioFailure(f"Payment declined {PAYMENT_ATTEMPTS} times in a row")


# =========================
# Scenarios
# =========================

def scenario_cash_on_delivery() -> List[TestResult]:
    scenario = "Scenario 1 - Cash on Delivery"
    section_title(scenario)
    state: Dict[str, Any] = {}

    def place():
        body = draft_order("pm_demo_cash")
        state["order_id"] = body["orderId"]
        order = body["order"]
        if order["status"] != "pending" or order["payment"]["authorized"]:
            raise ScenarioFailure(f"Expected an unauthorized pending order, got {order}")
        return f"id={state['order_id']}"

    def check_totals():
        order = get_order(state["order_id"])
        taxable = Decimal(order["subtotal"]) - Decimal(order["discountTotal"])
        expected = max(taxable, Decimal("0")) + Decimal(order["gstAmount"])
        if Decimal(order["total"]) != expected:
            raise ScenarioFailure(f"total {order['total']} != {expected}")
        return f"total={order['total']}"

    def lifecycle():
        for status in LIFECYCLE:
            expect(http("PUT", f"/admin/orders/{state['order_id']}/status", json={"status": status},
                        headers=ADMIN_HEADERS), 200, f"move to {status}")
        return "pending → delivered"

    results = [step("Place cash order", scenario, place)]
    if not results[-1].success:
        return results
    results.append(step("Totals add up", scenario, check_totals))
    results.append(step("Admin lifecycle", scenario, lifecycle))
    return results


def scenario_card_payment() -> List[TestResult]:
    scenario = "Scenario 2 - Card Payment"
    section_title(scenario)
    state: Dict[str, Any] = {}

    def validate():
        body = draft_order("pm_demo_card")
        state["draft"] = body["orderData"]
        if "id" in state["draft"]:
            raise ScenarioFailure("A card draft must not be persisted")
        return f"total={state['draft']['total']}"

    def pay():
        payment = pay_with_retries(state["draft"])
        state["order_id"] = payment["orderId"]
        return f"txn={payment['transactionId']}"

    def check_paid():
        order = get_order(state["order_id"])
        if order["status"] != "paid":
            raise ScenarioFailure(f"Expected status paid, got {order['status']}")
        return f"status={order['status']}"

    def confirmation():
        resp = http("POST", "/send-order-email", json={"orderId": state["order_id"]}, headers=USER_HEADERS)
        if resp.status_code == 502:
            warn("Broker unavailable; the order itself is unaffected")
            return "skipped (502)"
        expect(resp, 200, "POST /send-order-email")
        return "sent"

    results = [step("Validate card order", scenario, validate)]
    if not results[-1].success:
        return results
    results.append(step("Authorize payment", scenario, pay))
    if not results[-1].success:
        return results
    results.append(step("Order is paid", scenario, check_paid))
    results.append(step("Send confirmation", scenario, confirmation))
    return results


def scenario_feedback() -> List[TestResult]:
    scenario = "Scenario 3 - Feedback & Ratings"
    section_title(scenario)
    state: Dict[str, Any] = {}

    def place():
        state["order_id"] = draft_order("pm_demo_cash")["orderId"]
        state["before"] = expect(http("GET", "/product-reviews/p-latte"), 200, "GET product reviews")
        return f"id={state['order_id']}"

    def review():
        body = {"orderId": state["order_id"], "productId": "p-latte", "rating": 5, "comment": "E2E"}
        expect(http("POST", "/product-review", json=body, headers=USER_HEADERS), 201, "POST /product-review")
        after = expect(http("GET", "/product-reviews/p-latte"), 200, "GET product reviews")
        before_count = state["before"]["productInfo"]["reviewCount"]
        after_count = after["productInfo"]["reviewCount"]
        if before_count and after_count != before_count + 1:
            raise ScenarioFailure(f"reviewCount went from {before_count} to {after_count}")
        return f"rating={after['productInfo']['averageRating']} ({after_count} reviews)"

    def duplicate():
        body = {"orderId": state["order_id"], "productId": "p-latte", "rating": 1}
        expect(http("POST", "/product-review", json=body, headers=USER_HEADERS), 409, "duplicate review")
        return "rejected with 409"

    results = [step("Place order to review", scenario, place)]
    if not results[-1].success:
        return results
    results.append(step("Product review", scenario, review))
    results.append(step("Duplicate review", scenario, duplicate))
    return results


# =========================
# Summary
# =========================

def print_results(results: List[TestResult]):
    print(f"\n{Style.BOLD}================ TEST RESULTS ================ {Style.RESET}")
    passed = 0
    per_scenario: Dict[str, Dict[str, int]] = {}

    for r in results:
        icon = "✅" if r.success else "❌"
        color = Style.GREEN if r.success else Style.RED
        print(f"{color}{icon} {r.name}{Style.RESET}")
        if r.details:
            print(f"    {Style.DIM}{r.details}{Style.RESET}")

        if r.success:
            passed += 1

        if r.scenario:
            per_scenario.setdefault(r.scenario, {"total": 0, "passed": 0})
            per_scenario[r.scenario]["total"] += 1
            if r.success:
                per_scenario[r.scenario]["passed"] += 1

    total = len(results)
    failed = total - passed
    print(f"{Style.BOLD}==============================================={Style.RESET}")
    print(f"Total tests: {total}  |  Passed: {Style.GREEN}{passed}{Style.RESET}  |  Failed: {Style.RED}{failed}{Style.RESET}")
    print(f"{Style.BOLD}===============================================\n{Style.RESET}")

    if per_scenario:
        print(f"{Style.BOLD}Scenario breakdown:{Style.RESET}")
        for scen, agg in per_scenario.items():
            p, t = agg["passed"], agg["total"]
            color = Style.GREEN if p == t else (Style.YELLOW if p > 0 else Style.RED)
            print(f"  {color}- {scen}: {p}/{t} passed{Style.RESET}")

    if failed > 0:
        print(f"\n{Style.YELLOW}{Style.BOLD}Troubleshooting hints:{Style.RESET}")
        print(f"{Style.YELLOW}- 403 on admin calls: ADMIN_TOKEN must match the service's.{Style.RESET}")
        print(f"{Style.YELLOW}- Review counts off: the products table may not be seeded.{Style.RESET}")
        print()
    return failed


def main(scenarios: Optional[List] = None):
    banner()
    info(f"Target: {CHECKOUT_BASE} as user {E2E_USER}")

    if not wait_for_health():
        sys.exit(1)

    all_results: List[TestResult] = []
    for scenario in scenarios or (scenario_cash_on_delivery, scenario_card_payment, scenario_feedback):
        all_results.extend(scenario())

    if print_results(all_results):
        sys.exit(1)


if __name__ == "__main__":
    main()

import unittest
import uuid

from fastapi.testclient import TestClient

from backend.config import Settings
from backend.main import create_app
from backend.seed_loader import SeedSourceUnavailable, StaticSeedSource
from backend.transaction_store import create_store_engine

SCENARIO_ITEMS = [
    {
        "title": "Fjallraven Backpack",
        "description": "Fits 15 Laptops",
        "price": 50,
        "category": "A",
        "image": "https://fakestoreapi.com/img/1.jpg",
        "sold": True,
        "dateOfSale": "2024-01-15T00:00:00",
    },
    {
        "title": "Mens Casual T-Shirt",
        "description": "Slim-fitting style",
        "price": 150,
        "category": "B",
        "image": "https://fakestoreapi.com/img/2.jpg",
        "sold": False,
        "dateOfSale": "2024-01-20T00:00:00",
    },
    {
        "title": "Mens Cotton Jacket",
        "description": "Great outerwear jacket",
        "price": 50,
        "category": "A",
        "image": "https://fakestoreapi.com/img/3.jpg",
        "sold": True,
        "dateOfSale": "2024-02-01T00:00:00",
    },
]


class UnavailableSource:
    def fetch(self) -> list:
        raise SeedSourceUnavailable("Failed to fetch data from the third-party API")


class ApiTestCase(unittest.TestCase):
    seed_on_startup = True

    def seed_source(self):
        return StaticSeedSource(SCENARIO_ITEMS)

    def setUp(self) -> None:
        self.engine = create_store_engine("sqlite://")
        self.app = create_app(
            Settings(seed_on_startup=self.seed_on_startup, log_level="WARNING"),
            engine=self.engine,
            seed_source=self.seed_source(),
        )
        self.client = TestClient(self.app)
        self.client.__enter__()
        self.addCleanup(self.engine.dispose)
        self.addCleanup(self.client.__exit__, None, None, None)


class DashboardEndpointTests(ApiTestCase):
    def test_statistics_for_january(self) -> None:
        response = self.client.get("/api/transactions/statistics", params={"month": "January"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"totalSales": 200, "totalSoldItems": 1, "totalNotSoldItems": 1},
        )

    def test_month_defaults_to_january(self) -> None:
        response = self.client.get("/api/transactions/statistics")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["totalSales"], 200)

    def test_bar_chart_for_january(self) -> None:
        response = self.client.get("/api/transactions/bar-chart", params={"month": "January"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(len(payload), 10)
        self.assertEqual(payload[0], {"range": "0-100", "count": 1})
        self.assertEqual(payload[1], {"range": "101-200", "count": 1})
        self.assertEqual(payload[-1], {"range": "901-above", "count": 0})
        self.assertTrue(all(entry["count"] == 0 for entry in payload[2:]))

    def test_pie_chart_for_january(self) -> None:
        response = self.client.get("/api/transactions/pie-chart", params={"month": "January"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            [{"category": "A", "count": 1}, {"category": "B", "count": 1}],
        )

    def test_combined_response_matches_individual_endpoints(self) -> None:
        combined = self.client.get(
            "/api/transactions/combined-response", params={"month": "February"}
        ).json()

        self.assertEqual(set(combined), {"statistics", "barChart", "pieChart"})
        for key, path in (
            ("statistics", "statistics"),
            ("barChart", "bar-chart"),
            ("pieChart", "pie-chart"),
        ):
            individual = self.client.get(f"/api/transactions/{path}", params={"month": "February"})
            self.assertEqual(combined[key], individual.json())
        self.assertEqual(combined["pieChart"], [{"category": "A", "count": 1}])

    def test_empty_month_returns_zeros(self) -> None:
        response = self.client.get("/api/transactions/statistics", params={"month": "July"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"totalSales": 0, "totalSoldItems": 0, "totalNotSoldItems": 0},
        )

    def test_month_names_are_case_insensitive_and_numbers_work(self) -> None:
        by_name = self.client.get("/api/transactions/statistics", params={"month": "february"})
        by_number = self.client.get("/api/transactions/statistics", params={"month": "2"})

        self.assertEqual(by_name.json(), by_number.json())
        self.assertEqual(by_name.json()["totalSales"], 50)

    def test_invalid_month_returns_400(self) -> None:
        for path in ("", "/statistics", "/bar-chart", "/pie-chart", "/combined-response"):
            for month in ("Smarch", "²"):
                with self.subTest(path=path, month=month):
                    response = self.client.get(
                        f"/api/transactions{path}", params={"month": month}
                    )

                    self.assertEqual(response.status_code, 400)
                    payload = response.json()
                    self.assertEqual(payload["error"], "Invalid month.")
                    self.assertIn(month, payload["details"])

    def test_error_responses_carry_cors_headers(self) -> None:
        origin = "http://localhost:3000"
        for path, params in (
            ("/statistics", {"month": "²"}),
            ("", {"perPage": 10**19}),
        ):
            with self.subTest(path=path, params=params):
                response = self.client.get(
                    f"/api/transactions{path}", params=params, headers={"Origin": origin}
                )

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.headers["access-control-allow-origin"], origin)


class TransactionListEndpointTests(ApiTestCase):
    def test_lists_month_with_total(self) -> None:
        response = self.client.get("/api/transactions", params={"month": "January"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["total"], 2)
        titles = [item["title"] for item in payload["transactions"]]
        self.assertEqual(titles, ["Fjallraven Backpack", "Mens Casual T-Shirt"])

    def test_transactions_use_camel_case_fields(self) -> None:
        payload = self.client.get(
            "/api/transactions/", params={"month": "January", "search": "backpack"}
        ).json()

        self.assertEqual(payload["total"], 1)
        item = payload["transactions"][0]
        self.assertEqual(
            set(item),
            {"id", "title", "description", "price", "category", "sold", "dateOfSale", "image"},
        )
        self.assertEqual(uuid.UUID(item["id"]).version, 4)
        self.assertEqual(item["price"], 50)
        self.assertTrue(item["sold"])
        self.assertTrue(item["dateOfSale"].startswith("2024-01-15T00:00:00"))

    def test_search_matches_description_but_not_price(self) -> None:
        by_description = self.client.get(
            "/api/transactions", params={"month": "January", "search": "SLIM"}
        ).json()
        by_price = self.client.get(
            "/api/transactions", params={"month": "January", "search": "150"}
        ).json()

        self.assertEqual(by_description["total"], 1)
        self.assertEqual(by_description["transactions"][0]["title"], "Mens Casual T-Shirt")
        self.assertEqual(by_price, {"transactions": [], "total": 0})

    def test_pagination_parameters(self) -> None:
        first = self.client.get(
            "/api/transactions", params={"month": "January", "page": 1, "perPage": 1}
        ).json()
        second = self.client.get(
            "/api/transactions", params={"month": "January", "page": 2, "perPage": 1}
        ).json()

        self.assertEqual(first["total"], 2)
        self.assertEqual(second["total"], 2)
        self.assertEqual(len(first["transactions"]), 1)
        self.assertNotEqual(first["transactions"][0]["id"], second["transactions"][0]["id"])

    def test_malformed_pagination_returns_400(self) -> None:
        for params in (
            {"page": "abc"},
            {"page": 0},
            {"perPage": -1},
            {"page": 10**18},
            {"perPage": 10**19},
        ):
            with self.subTest(params=params):
                response = self.client.get("/api/transactions", params=params)

                self.assertEqual(response.status_code, 400)
                self.assertEqual(set(response.json()), {"error", "details"})


class InitializeEndpointTests(ApiTestCase):
    def test_initialize_reseeds_with_fresh_ids(self) -> None:
        before = self.client.get("/api/transactions", params={"month": "January"}).json()

        response = self.client.get("/api/transactions/initialize")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"message": "Database initialized successfully!", "count": 3},
        )
        after = self.client.get("/api/transactions", params={"month": "January"}).json()
        self.assertEqual(after["total"], before["total"])
        self.assertFalse(
            {item["id"] for item in before["transactions"]}
            & {item["id"] for item in after["transactions"]}
        )

    def test_failed_initialize_returns_500_and_keeps_data(self) -> None:
        self.app.state.seed_source = UnavailableSource()

        response = self.client.get("/api/transactions/initialize")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.json(),
            {
                "error": "Error initializing database.",
                "details": "Failed to fetch data from the third-party API",
            },
        )
        statistics = self.client.get("/api/transactions/statistics").json()
        self.assertEqual(statistics["totalSales"], 200)

    def test_health_reports_seed_state(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.json(), {"status": "ok", "seed": "ready"})


class ReadinessGateTests(ApiTestCase):
    def seed_source(self):
        return UnavailableSource()

    def test_data_endpoints_wait_for_a_successful_seed(self) -> None:
        self.assertEqual(self.client.get("/health").json()["seed"], "failed")
        for path in ("", "/statistics", "/bar-chart", "/pie-chart", "/combined-response"):
            with self.subTest(path=path):
                response = self.client.get(f"/api/transactions{path}")

                self.assertEqual(response.status_code, 503)
                self.assertEqual(response.json()["error"], "Transaction store is not ready.")

        self.app.state.seed_source = StaticSeedSource(SCENARIO_ITEMS)
        initialized = self.client.get("/api/transactions/initialize")

        self.assertEqual(initialized.status_code, 200)
        statistics = self.client.get("/api/transactions/statistics")
        self.assertEqual(statistics.status_code, 200)
        self.assertEqual(statistics.json()["totalSales"], 200)


class StartupSeedDisabledTests(ApiTestCase):
    seed_on_startup = False

    def test_store_is_served_as_is(self) -> None:
        self.assertEqual(self.client.get("/health").json()["seed"], "ready")

        response = self.client.get("/api/transactions", params={"month": "March"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"transactions": [], "total": 0})


if __name__ == "__main__":
    unittest.main()

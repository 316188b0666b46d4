"""API metadata shared by the application and OpenAPI docs."""

API_TITLE = "Appointment & Refund Engine API"
API_DESCRIPTION = (
    "Viewing appointments between buyers and sellers of listings, "
    "their payments, and the refund request workflow."
)
API_VERSION = "1.0.0"
API_V1_PREFIX = "/api/v1"

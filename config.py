import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY") or "dev-secret-key-change-in-production"
    ENVIRONMENT = os.environ.get("ENVIRONMENT", "local").lower()
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "renormalize" or "raw"; see utils.grade_calculation.WeightPolicy
    GRADE_WEIGHT_POLICY = os.environ.get("GRADE_WEIGHT_POLICY", "renormalize").lower()
    BULK_TRANSITION_LIMIT = int(os.environ.get("BULK_TRANSITION_LIMIT", "200"))
    AT_RISK_GRADE = float(os.environ.get("AT_RISK_GRADE", "75"))
    AT_RISK_MISSING_RATIO = float(os.environ.get("AT_RISK_MISSING_RATIO", "0.3"))

    WTF_CSRF_ENABLED = os.environ.get("WTF_CSRF_ENABLED", "True").lower() == "true"
    WTF_CSRF_TIME_LIMIT = None


class TestingConfig(Config):
    TESTING = True
    ENVIRONMENT = "testing"
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    GRADE_WEIGHT_POLICY = "renormalize"
    WTF_CSRF_ENABLED = False

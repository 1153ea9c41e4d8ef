"""Pydantic models for dispute evidence packages."""

import csv
import io
import json
import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class EvidenceStatus(StrEnum):
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionDetails(BaseModel):
    order_id: str
    amount: float
    date: datetime
    customer_email: str
    customer_ip: str | None = None
    card_bin: str | None = None
    payment_method: str | None = None


class ProofOfDelivery(BaseModel):
    tracking_number: str
    carrier: str
    delivered_at: datetime | None = None
    signature_url: str | None = None
    delivery_address: str | None = None


class CommunicationRecord(BaseModel):
    date: datetime
    channel: str
    summary: str
    message_preview: str | None = None


class ProductDetails(BaseModel):
    name: str
    description: str | None = None
    sku: str | None = None
    image_urls: list[str] = Field(default_factory=list)


class TermsAcceptance(BaseModel):
    accepted_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    terms_version: str | None = None


class FraudAnalysis(BaseModel):
    risk_score: int
    risk_level: str
    decision: str
    confidence: int
    signals: list[dict] = Field(default_factory=list)


class ChargebackSummary(BaseModel):
    reason: str | None = None
    amount: float | None = None
    filed_at: datetime | None = None


class DeliveryRecords(BaseModel):
    """What the shipping/communication collaborator knows about an order."""

    tracking: ProofOfDelivery | None = None
    messages: list[CommunicationRecord] = Field(default_factory=list)
    product: ProductDetails | None = None
    terms_acceptance: TermsAcceptance | None = None
    payment_method: str | None = None


class EvidencePackage(BaseModel):
    package_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    merchant_id: str
    status: EvidenceStatus = EvidenceStatus.GENERATING
    transaction_details: TransactionDetails | None = None
    proof_of_delivery: ProofOfDelivery | None = None
    customer_communication: list[CommunicationRecord] = Field(default_factory=list)
    product_details: ProductDetails | None = None
    terms_acceptance: TermsAcceptance | None = None
    fraud_analysis: FraudAnalysis | None = None
    chargeback: ChargebackSummary | None = None
    error: str | None = None
    attempts: int = 0
    created_at: datetime
    generated_at: datetime | None = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def to_csv(self) -> str:
        """Flatten the package into section/field/value rows."""
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=["section", "field", "value"])
        writer.writeheader()

        def write_section(section: str, model: BaseModel | None) -> None:
            if model is None:
                return
            for key, value in model.model_dump(mode="json").items():
                if isinstance(value, list):
                    value = "; ".join(str(v) for v in value)
                writer.writerow({"section": section, "field": key, "value": value})

        writer.writerow({"section": "package", "field": "package_id", "value": self.package_id})
        writer.writerow({"section": "package", "field": "status", "value": self.status.value})
        write_section("transaction_details", self.transaction_details)
        write_section("chargeback", self.chargeback)
        write_section("proof_of_delivery", self.proof_of_delivery)
        write_section("product_details", self.product_details)
        write_section("terms_acceptance", self.terms_acceptance)
        for i, record in enumerate(self.customer_communication):
            write_section(f"customer_communication[{i}]", record)
        if self.fraud_analysis is not None:
            analysis = self.fraud_analysis
            for key in ("risk_score", "risk_level", "decision", "confidence"):
                writer.writerow(
                    {"section": "fraud_analysis", "field": key, "value": getattr(analysis, key)}
                )
            for signal in analysis.signals:
                writer.writerow(
                    {
                        "section": "fraud_analysis.signals",
                        "field": signal.get("name", ""),
                        "value": f"{signal.get('status', '')}:{signal.get('score', '')}",
                    }
                )

        return output.getvalue()

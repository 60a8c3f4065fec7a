"""Label extraction with low-confidence escalation and gap filling."""

import logging

from vinho_pipeline.core.config import AIConfig
from vinho_pipeline.core.errors import PipelineError, ValidationError
from vinho_pipeline.core.schema import ExtractedLabel, WineDescriptor
from vinho_pipeline.services.ai.client import AIClient

logger = logging.getLogger(__name__)


class LabelExtractor:
    """
    Turns a label image into an ExtractedLabel.

    When the first answer's confidence is below ``escalation_confidence`` and
    an escalation model is configured, the label is read once more with that
    model and the second answer is used.
    """

    def __init__(
        self,
        client: AIClient,
        escalation_model: str | None = None,
        escalation_confidence: float = 0.6,
    ) -> None:
        self.client = client
        self.escalation_model = escalation_model
        self.escalation_confidence = escalation_confidence

    @classmethod
    def from_config(cls, client: AIClient, config: AIConfig) -> "LabelExtractor":
        """Create an extractor from configuration."""
        return cls(
            client=client,
            escalation_model=config.escalation_model,
            escalation_confidence=config.escalation_confidence,
            complete_missing=config.complete_missing,
        )

    def extract(self, image_url: str | None, ocr_text: str | None = None) -> ExtractedLabel:
        """
        Extract label fields from an image.

        Args:
            image_url: URL of the label photo.
            ocr_text: Optional OCR text recognized on the device.

        Returns:
            ExtractedLabel

        Raises:
            ValidationError: If image_url is missing or blank.
            TransientProviderError: On provider failures.
            MalformedResponseError: If the provider's answer is unusable.
        """
        if not image_url or not image_url.strip():
            raise ValidationError("image_url is required for label extraction")

        label = self.client.extract_label(image_url, ocr_text=ocr_text)
        logger.info(
            f"Extracted '{label.winery_name} / {label.wine_name}' "
            f"(confidence {label.confidence:.2f}, model {self.client.model})"
        )

        if (
            self.escalation_model
            and self.escalation_model != self.client.model
            and label.confidence < self.escalation_confidence
        ):
            logger.info(
                f"Confidence {label.confidence:.2f} below {self.escalation_confidence}, "
                f"retrying with {self.escalation_model}"
            )
            label = self.client.extract_label(
                image_url, ocr_text=ocr_text, model=self.escalation_model
            )

        return label

    def complete(self, label: ExtractedLabel) -> tuple[ExtractedLabel, list[str]]:
        """
        Fill fields the label did not show from the enrichment model.

        Only empty fields are taken from the answer; anything read off the
        label wins. Producer website and winery location come along with
        the identity fields. A provider failure keeps the label as read.

        Returns:
            Tuple of (label, names of the fields that were filled)
        """
        missing = label.missing_fields
        if not self.complete_missing or not missing:
            return label, []

        descriptor = WineDescriptor(
            producer=label.winery_name,
            wine_name=label.wine_name,
            year=label.year,
            region=label.region,
            country=label.country,
            varietals=label.varietals,
        )
        try:
            data = self.client.enrich_wine(descriptor)
        except PipelineError as e:
            logger.warning(
                f"Could not complete '{label.winery_name} / {label.wine_name}' "
                f"(missing {', '.join(missing)}), using the label as read: {e}"
            )
            return label, []

        completed = label.fill_from(data)
        filled = [
            name
            for name in type(label).model_fields
            if getattr(label, name) != getattr(completed, name)
        ]
        if filled:
            logger.info(
                f"Completed '{label.winery_name} / {label.wine_name}' with {', '.join(filled)}"
            )
        return completed, filled

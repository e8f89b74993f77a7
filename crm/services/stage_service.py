"""Stage service — derives a prospect's current pipeline position.

The stage is never stored. It is recomputed from whichever descendant
records exist (prospect -> lead -> sample order -> agreement) because an
agreement can move backwards (agreement_sent -> revisit_needed) without
anything touching the prospect row.

Only "signed" and "agreement_sent" agreements reach the Agreement tier.
An agreement in revisit_needed, lost, quality_failed or pending_feedback
leaves the prospect at SampleOrder.
"""

from enum import IntEnum


class Stage(IntEnum):
    PROSPECT = 1
    LEAD = 2
    SAMPLE_ORDER = 3
    AGREEMENT = 4
    CUSTOMER = 5

    @property
    def label(self):
        return STAGE_LABELS[self]

    @classmethod
    def from_label(cls, label):
        """Return the Stage whose display label is `label`, or None."""
        for stage, text in STAGE_LABELS.items():
            if text == label:
                return stage
        return None


STAGE_LABELS = {
    Stage.PROSPECT: "Prospect",
    Stage.LEAD: "Lead",
    Stage.SAMPLE_ORDER: "Sample Order",
    Stage.AGREEMENT: "Agreement",
    Stage.CUSTOMER: "Customer",
}


def classify(prospect, lead=None, order=None, agreement=None):
    """Return the highest Stage reached by `prospect`.

    Args:
        prospect: The root Prospect (only used as the anchor of the chain).
        lead: The Lead referencing the prospect, if any.
        order: The SampleOrder referencing that lead, if any.
        agreement: The Agreement referencing that order, if any.

    Returns:
        Stage
    """
    if agreement is not None and agreement.status == "signed":
        return Stage.CUSTOMER
    if agreement is not None and agreement.status == "agreement_sent":
        return Stage.AGREEMENT
    if order is not None:
        return Stage.SAMPLE_ORDER
    if lead is not None:
        return Stage.LEAD
    return Stage.PROSPECT

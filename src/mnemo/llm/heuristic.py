"""Offline collaborators that need no model."""

from mnemo.llm.base import SentimentAnalyzer

# Importance markers ("critical", "never", ...) stay out of both lists: a
# marker must not cancel the emotion signal it sits next to.
POSITIVE_MARKERS = (
    "great", "excellent", "perfect", "amazing", "wonderful",
    "fantastic", "awesome", "love", "thank you", "thanks",
)

NEGATIVE_MARKERS = (
    "problem", "issue", "error", "bug", "fail", "wrong",
    "broken", "crash", "urgent", "emergency",
)


class LexiconSentimentAnalyzer(SentimentAnalyzer):
    """Marker-counting sentiment.

    Positive markers count 0.1, negative 0.15 (negative emotion weighs
    more), exclamation marks and shouted words add intensity in the
    direction of the dominant polarity.
    """

    async def analyze(self, text: str) -> float:
        return self.score(text)

    def score(self, text: str) -> float:
        if not text:
            return 0.0

        lower = text.lower()
        positive = sum(0.1 for m in POSITIVE_MARKERS if m in lower)
        negative = sum(0.15 for m in NEGATIVE_MARKERS if m in lower)

        intensity = min(text.count("!") * 0.05, 0.2)
        shouted = sum(1 for w in text.split() if len(w) > 3 and w.isupper())
        intensity += min(shouted * 0.1, 0.3)

        polarity = positive - negative
        if polarity > 0:
            polarity += intensity
        elif polarity < 0:
            polarity -= intensity
        elif intensity:
            # Strong but unpolarized emotion still matters for salience
            polarity = -intensity

        return max(-1.0, min(1.0, polarity))

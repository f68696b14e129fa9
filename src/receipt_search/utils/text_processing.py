"""Text processing utilities for receipt and warranty content."""

import re
from typing import List


class TextProcessor:
    """Text processing utilities for purchase records and queries."""

    def __init__(self):
        """Initialize text processor with purchase record patterns."""
        # Words that describe the analysis rather than the purchases
        self.analysis_terms = {
            'spending', 'spent', 'spend', 'total', 'totals', 'budget', 'expenses',
            'expense', 'analyze', 'analyse', 'analysis', 'trend', 'trends', 'pattern',
            'patterns', 'anomaly', 'anomalies', 'unusual', 'average', 'breakdown',
            'insights', 'insight', 'summary', 'how', 'much', 'my', 'me', 'i', 'on',
            'in', 'for', 'the', 'a', 'an', 'of', 'what', 'whats', "what's", 'is', 'are',
            'was', 'were', 'did', 'do', 'show', 'give', 'tell', 'about', 'all', 'and',
            'over', 'time', 'compare', 'comparison', 'money', 'purchases', 'purchase',
            'receipts', 'receipt', 'from', 'to', 'with', 'by', 'per', 'category',
            'categories', 'where', 'at', 'cost', 'costs',
        }

        self.time_terms = {
            'today', 'yesterday', 'this', 'last', 'past', 'previous', 'week', 'weeks',
            'month', 'months', 'year', 'years', 'day', 'days', 'since', 'between',
            'ago', 'quarter',
        }

        self.amount_pattern = re.compile(r'\$\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?|\b\d+\.\d{2}\b')
        self.date_pattern = re.compile(r'\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b|\b\d{4}-\d{1,2}-\d{1,2}\b')
        self.word_pattern = re.compile(r"[a-z][a-z']*")

    def clean_text(self, text: str) -> str:
        """
        Clean and normalize text for lexical matching.

        Args:
            text: Raw text content

        Returns:
            Lower-cased text with punctuation reduced to spaces
        """
        if not text:
            return ""

        text = text.lower()

        # Keep characters that carry meaning in amounts and dates
        text = re.sub(r'[^\w\s$./-]', ' ', text)

        text = re.sub(r'\s+', ' ', text).strip()

        return text

    def content_words(self, text: str) -> List[str]:
        """
        Words left after removing analysis vocabulary, time phrases, amounts and dates.

        A query with no content words is a purely time-bounded request.
        """
        if not text:
            return []

        cleaned = self.date_pattern.sub(' ', text.lower())
        cleaned = self.amount_pattern.sub(' ', cleaned)
        months = {
            'january', 'february', 'march', 'april', 'may', 'june', 'july',
            'august', 'september', 'october', 'november', 'december',
        }
        return [
            word for word in self.word_pattern.findall(cleaned)
            if word not in self.analysis_terms
            and word not in self.time_terms
            and word not in months
        ]

    def generate_context_snippet(
        self,
        text: str,
        query_terms: List[str],
        max_length: int = 200
    ) -> str:
        """
        Generate context snippet around query terms.

        Args:
            text: Full record text, e.g. receipt OCR output
            query_terms: Terms to find context for
            max_length: Maximum snippet length, excluding ellipses

        Returns:
            Snippet from the window containing the most query terms,
            or the start of the text when no term occurs
        """
        if not text:
            return ""
        if len(text) <= max_length:
            return text

        text_lower = text.lower()
        query_lower = [term.lower() for term in query_terms if term]

        best_pos = 0
        max_matches = 0

        for i in range(0, len(text) - max_length + 1, 20):
            window = text_lower[i:i + max_length]
            matches = sum(1 for term in query_lower if term in window)

            if matches > max_matches:
                max_matches = matches
                best_pos = i

        snippet = text[best_pos:best_pos + max_length]

        # Do not start mid-word
        if best_pos > 0 and not text[best_pos - 1].isspace():
            space_pos = snippet.find(' ')
            if space_pos > 0:
                snippet = snippet[space_pos + 1:]

        snippet = snippet.strip()
        if best_pos > 0:
            snippet = "..." + snippet
        if best_pos + max_length < len(text):
            snippet = snippet + "..."

        return snippet

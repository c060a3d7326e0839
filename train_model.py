#!/usr/bin/env python3
"""
Train the Spam Scanner classifier model
Reads a labelled corpus and writes the Naive Bayes model used at load time
"""

import argparse
import csv
import logging
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv

from spamscanner.config import settings
from spamscanner.core.classifier import train_classifier


def load_sample_dataset() -> Tuple[List[str], List[str]]:
    """Small built-in corpus, enough to produce a working model"""

    ham_emails = [
        "Meeting scheduled for tomorrow at 2 PM in conference room A",
        "Please review the attached quarterly report by end of week",
        "Reminder: Team lunch on Friday at the new Italian restaurant",
        "Your package has been delivered. Thank you for your order",
        "Weekly newsletter: Top 10 productivity tips for remote work",
        "Project update: Phase 1 completed successfully, moving to Phase 2",
        "Thank you for attending yesterday's webinar",
        "Can we move our call to Thursday afternoon?",
        "Notes from the design review are in the shared folder",
        "Company holiday schedule for next month"
    ]

    spam_emails = [
        "Congratulations! You've won $1,000,000. Click here to claim your prize NOW",
        "Cheap meds online, no prescription needed, buy viagra now",
        "Limited time offer! Get iPhone 15 for $99. Hurry, only 5 left!",
        "Make money fast working from home, earn $5000 per week guaranteed",
        "You have been selected for an exclusive casino bonus, free spins",
        "Lose 30 pounds in 30 days with this miracle pill",
        "Hot singles in your area want to meet you tonight",
        "Act now: lowest mortgage rates, refinance today, no credit check",
        "Unclaimed lottery winnings waiting for you, send your bank details",
        "Buy cheap replica watches and designer bags, free shipping"
    ]

    emails = ham_emails + spam_emails
    labels = ['ham'] * len(ham_emails) + ['spam'] * len(spam_emails)
    return emails, labels


def load_csv_dataset(path: str) -> Tuple[List[str], List[str]]:
    """CSV with ``label`` (spam/ham) and ``text`` columns"""
    emails, labels = [], []
    with open(path, newline='', encoding='utf-8') as f:
        for row in csv.DictReader(f):
            label = (row.get('label') or '').strip().lower()
            if label not in ('spam', 'ham'):
                continue
            emails.append(row.get('text') or '')
            labels.append(label)
    return emails, labels


def main():
    parser = argparse.ArgumentParser(description='Train the Spam Scanner classifier')
    parser.add_argument('--dataset', help='CSV file with label,text columns (default: built-in sample)')
    parser.add_argument('--output', default=None, help='Model path (default: CLASSIFIER_MODEL_PATH)')
    parser.add_argument('--alpha', type=float, default=1.0, help='Additive smoothing')

    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    print("=" * 60)
    print("Spam Scanner Model Training")
    print("=" * 60)

    print("\n📚 Loading training dataset...")
    if args.dataset:
        emails, labels = load_csv_dataset(args.dataset)
    else:
        emails, labels = load_sample_dataset()

    spam_count = labels.count('spam')
    print(f"  ✓ Loaded {len(emails)} emails ({spam_count} spam, {len(labels) - spam_count} ham)")

    if spam_count == 0 or spam_count == len(labels):
        print("  ❌ Training data needs both spam and ham examples")
        raise SystemExit(1)

    model = train_classifier(emails, labels, alpha=args.alpha)

    output = args.output or settings.CLASSIFIER_MODEL_PATH
    model.save(output)

    print("\n" + "=" * 60)
    print("✓ Training Complete!")
    print("=" * 60)
    print(f"\nModel saved to {Path(output)}")
    print("You can now run: python -m spamscanner.main")


if __name__ == "__main__":
    main()

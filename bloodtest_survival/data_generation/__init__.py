"""Synthetic blood-test data generation."""

from .generate_blood_test_data import BloodTestDataGenerator

__all__ = ['BloodTestDataGenerator']

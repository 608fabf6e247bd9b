"""Tutorbook - tutoring session scheduling and hour-wallet accounting"""

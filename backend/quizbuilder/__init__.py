"""Application package for the quiz builder backend.

This package exposes the service, repository and model modules used by
the FastAPI application. Creators author quizzes through the builder
endpoints; respondents take published quizzes and receive a score that
is persisted together with their normalized responses.
"""

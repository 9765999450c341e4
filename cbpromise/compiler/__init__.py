"""Matcher, name allocation and template expansion for the promisify rewrite."""

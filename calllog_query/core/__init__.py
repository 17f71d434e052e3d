"""Search parsing, query compilation, discovery, percentiles and pagination."""

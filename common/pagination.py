from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    page_size_query_param = "page_size"
    max_page_size = 200


class BarcodeResultsSetPagination(PageNumberPagination):
    """A single length entry can mint hundreds of codes; label runs page through them in bulk."""

    page_size = 100
    page_size_query_param = "page_size"
    max_page_size = 1000

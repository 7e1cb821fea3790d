from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """page/limit pagination; limit defaults to 10 and is capped at 50."""

    page_size = 10
    page_size_query_param = 'limit'
    max_page_size = 50

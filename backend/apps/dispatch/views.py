from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_filters.rest_framework import DjangoFilterBackend

from apps.utils.idempotency import idempotent

from .models import Dispatch
from .serializers import DispatchSerializer, CreateDispatchSerializer
from .services import DispatchService


class DispatchListCreateAPIView(generics.ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = DispatchSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'vehicle_no']
    queryset = Dispatch.objects.prefetch_related("orders")

    @idempotent()
    def post(self, request):
        serializer = CreateDispatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        dispatch = DispatchService.create_dispatch(
            order_ids=data["order_ids"],
            vehicle_no=data["vehicle_no"],
            driver_name=data["driver_name"],
            created_by=request.user,
            remarks=data.get("remarks"),
        )
        return Response(DispatchSerializer(dispatch).data, status=status.HTTP_201_CREATED)


class DeliverDispatchAPIView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        dispatch = get_object_or_404(Dispatch, pk=pk)
        dispatch = DispatchService.mark_delivered(dispatch, request.user)
        return Response(DispatchSerializer(dispatch).data)
